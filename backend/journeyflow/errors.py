class JourneyError(Exception):
    """Base class for every error raised by the journey core."""


class DefinitionError(JourneyError):
    pass


class DuplicateNameError(DefinitionError):
    def __init__(self, name: str):
        super().__init__(f"Journey {name} is already registered")
        self.name = name


class InvalidGraphError(DefinitionError):
    def __init__(self, name: str, problems):
        self.name = name
        self.problems = list(problems)
        super().__init__(f"Journey {name} is invalid: {'; '.join(self.problems)}")


class JourneyLookupError(JourneyError, LookupError):
    pass


class JourneyNotFoundError(JourneyLookupError):
    def __init__(self, name: str):
        super().__init__(f"Journey {name} not found")
        self.name = name


class UserNotEnrolledError(JourneyLookupError):
    def __init__(self, user_id: str, journey_name: str):
        super().__init__(f"User {user_id} is not enrolled in journey {journey_name}")
        self.user_id = user_id
        self.journey_name = journey_name


class InvalidEventError(JourneyError):
    pass


class ConcurrentUpdateError(JourneyError):
    """The stored record changed between read and write."""


class NotifierError(JourneyError):
    pass


class DeliveryError(NotifierError):
    pass


class CrmError(NotifierError):
    pass
