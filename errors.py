from fastapi import HTTPException


class ApiError(HTTPException):
    """An HTTP error rendered as ``{flag: false, "message": detail}``.

    Most routes report their outcome under ``success``; a few older ones use
    ``status`` and pass ``flag="status"``.
    """

    def __init__(self, status_code: int, message: str, flag: str = "success"):
        super().__init__(status_code=status_code, detail=message)
        self.flag = flag
