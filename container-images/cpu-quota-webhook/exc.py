class ApplicationError(Exception):
    pass


class ConfigurationError(ApplicationError):
    pass


class ResponseEncodeError(ApplicationError):
    pass


class InvalidRequestError(Exception):
    pass


class PodShapeError(ValueError):
    pass


class QuantityParseError(ValueError):
    pass
