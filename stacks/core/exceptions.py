
class StacksAPIError(Exception): pass

class ValidationError(StacksAPIError): pass

class StorageError(StacksAPIError): pass

class InconsistentStateError(StacksAPIError): pass

class NotFoundError(StacksAPIError): pass

class BookNotFoundError(NotFoundError): pass

class CopyNotFoundError(NotFoundError): pass

class StudentNotFoundError(NotFoundError): pass

class RequestNotFoundError(NotFoundError): pass

class ConflictError(StacksAPIError): pass

class BookExistsError(ConflictError): pass

class StudentExistsError(ConflictError): pass

class CopyUnavailableError(ConflictError): pass

class RequestAlreadyProcessedError(ConflictError): pass

class AtCapacityError(ConflictError): pass

class AlreadyCheckedInError(ConflictError): pass

class NotCheckedInError(ConflictError): pass
