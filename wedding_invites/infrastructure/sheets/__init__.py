from .workbook_gateway import SpreadsheetGateway, WorkbookGateway, filter_guests_by_sender

__all__ = ["SpreadsheetGateway", "WorkbookGateway", "filter_guests_by_sender"]
