"""Timestamp fields of ACME objects."""
import datetime
from typing import Any

import josepy as jose
import pyrfc3339


class RFC3339Field(jose.Field):
    """Timestamp sent as an RFC 3339 string.

    Decoded values are timezone aware and in UTC, whatever offset the
    server used, so they compare with `acmeflow.polling.utcnow`.
    Naive values are refused when encoding.

    """

    @classmethod
    def default_encoder(cls, value: datetime.datetime) -> str:
        return pyrfc3339.generate(value)

    @classmethod
    def default_decoder(cls, value: str) -> datetime.datetime:
        try:
            return pyrfc3339.parse(value, utc=True)
        except (TypeError, ValueError) as error:
            raise jose.DeserializationError(error)


def rfc3339(json_name: str, omitempty: bool = False) -> Any:
    """Typed `RFC3339Field` declaration."""
    return RFC3339Field(json_name, omitempty=omitempty)
