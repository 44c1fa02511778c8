class SheetBillError(Exception):
    status_code = 500


class GoogleAPIError(SheetBillError):
    status_code = 502

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class AuthError(SheetBillError):
    status_code = 401


class NotFoundError(SheetBillError):
    status_code = 404


class SchemaMismatchError(SheetBillError):
    """Header row of a sheet no longer matches the column map we write with."""

    def __init__(self, sheet, mismatches):
        self.sheet = sheet
        self.mismatches = mismatches
        detail = ", ".join(f"{col}: expected {exp!r}, found {got!r}" for col, exp, got in mismatches)
        super().__init__(f"{sheet} layout mismatch ({detail})")
