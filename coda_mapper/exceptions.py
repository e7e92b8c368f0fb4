class CodaMapperError(Exception):
    pass


class ConfigurationError(CodaMapperError):
    pass


class EntityWithoutIdentity(ConfigurationError, TypeError):
    pass


class MissingTableId(ConfigurationError):
    pass


class MissingColumnId(ConfigurationError):
    pass


class MissingRelationDeclaration(ConfigurationError):
    pass


class TypeMismatch(CodaMapperError, TypeError):
    def __init__(self, expected: type, actual: object) -> None:
        self.expected = expected
        self.actual = type(actual)
        super().__init__(f"Expected {expected.__name__} but got {self.actual.__name__}")


class NotPersisted(CodaMapperError):
    pass


class UnresolvedReference(CodaMapperError):
    pass


class IdentityReassigned(CodaMapperError, AttributeError):
    pass
