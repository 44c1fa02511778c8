"""SheetBill: invoicing on top of the user's own Google Sheets spreadsheet."""

__version__ = "0.1.0"
