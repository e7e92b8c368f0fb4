import os
import typing

import attr

from coda_mapper.exceptions import ConfigurationError


DEFAULT_BASE_URL = "https://coda.io/apis/v1"
ENV_PREFIX = "CODA_"


def _required(instance: typing.Any, attribute: attr.Attribute, value: typing.Any) -> None:
    if not value:
        raise ConfigurationError(f"{attribute.name} is required")


def _positive(instance: typing.Any, attribute: attr.Attribute, value: typing.Any) -> None:
    if value <= 0:
        raise ConfigurationError(f"{attribute.name} must be positive, got {value}")


@attr.s(auto_attribs=True, frozen=True)
class MapperSettings:
    doc_id: str = attr.ib(validator=_required)
    api_key: str = attr.ib(validator=_required, repr=False)
    base_url: str = attr.ib(default=DEFAULT_BASE_URL, converter=lambda url: url.rstrip("/"))
    timeout: float = attr.ib(default=30.0, converter=float, validator=_positive)
    page_size: int = attr.ib(default=500, converter=int, validator=_positive)
    mutation_poll_interval: float = attr.ib(default=1.0, converter=float, validator=_positive)
    mutation_not_found_retries: int = attr.ib(default=3, converter=int)

    @classmethod
    def from_env(
        cls, environ: typing.Optional[typing.Mapping[str, str]] = None, **overrides: typing.Any
    ) -> "MapperSettings":
        environ = os.environ if environ is None else environ
        kwargs = {}
        for field in attr.fields(cls):
            key = f"{ENV_PREFIX}{field.name.upper()}"
            if key in environ:
                kwargs[field.name] = environ[key]
        kwargs.update(overrides)
        kwargs.setdefault("doc_id", "")
        kwargs.setdefault("api_key", "")
        return cls(**kwargs)
