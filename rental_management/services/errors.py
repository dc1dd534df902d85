class RentalServiceError(RuntimeError):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(RentalServiceError):
    status_code = 404


class InvalidStateError(RentalServiceError):
    status_code = 400
