import pytest

from canvasproxy.workflows.errors import (
    ConfigurationError,
    ContentTypeNotAllowedError,
    ErrorCode,
    HTTPStatusError,
    ProxyError,
    SerializationStateError,
    TransportError,
    UrlNotAllowedError,
    ValidationError,
    error_for_code,
)


@pytest.mark.parametrize(
    "code, cls",
    [
        (ErrorCode.CONFIGURATION, ConfigurationError),
        (ErrorCode.NO_TRANSPORT, ConfigurationError),
        (ErrorCode.URL_NOT_ALLOWED, UrlNotAllowedError),
        (ErrorCode.CONTENT_TYPE_NOT_ALLOWED, ContentTypeNotAllowedError),
        (ErrorCode.INVALID_CALLBACK, ValidationError),
        (ErrorCode.TIMEOUT, TransportError),
        (ErrorCode.SIZE_EXCEEDED, TransportError),
        (ErrorCode.HTTP_STATUS, HTTPStatusError),
        (ErrorCode.NO_DOWNLOAD, SerializationStateError),
        (ErrorCode.GENERIC, ProxyError),
    ],
)
def test_error_for_code(code, cls):
    exc = error_for_code(code, "boom")
    assert type(exc) is cls
    assert exc.code == code
    assert exc.message == "boom"
    assert str(exc) == "boom"


def test_http_status_is_carried():
    exc = error_for_code(ErrorCode.HTTP_STATUS, "HTTP error: 500", http_status=500)
    assert exc.http_status == 500


def test_default_codes():
    assert UrlNotAllowedError("x").code == ErrorCode.URL_NOT_ALLOWED
    assert TransportError("x").code == ErrorCode.CONNECTION
    assert isinstance(ContentTypeNotAllowedError("x"), ValidationError)
