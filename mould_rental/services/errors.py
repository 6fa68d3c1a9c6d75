from __future__ import annotations


class MouldRentalError(RuntimeError):
    pass


class RentalValidationError(MouldRentalError):
    pass


class NotFoundError(MouldRentalError):
    def __init__(self, entity: str, identifier) -> None:
        super().__init__(f"{entity} {identifier} not found.")
        self.entity = entity
        self.identifier = identifier


class InsufficientAvailabilityError(MouldRentalError):
    def __init__(self, mould_type_id: int, name: str, requested: int, available: int) -> None:
        self.mould_type_id = mould_type_id
        self.name = name
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        super().__init__(
            f"Not enough '{name}' available: requested {requested}, "
            f"available {available}, short by {self.shortfall}."
        )


class ReceiptRetriesExhaustedError(MouldRentalError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Could not allocate a unique receipt number after {attempts} attempts.")
        self.attempts = attempts
