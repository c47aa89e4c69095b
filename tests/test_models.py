from cryptography import x509
from pyasn1.codec.der import decoder as der_decoder
from pyasn1.type import char

from fleetca.errors import CryptoError, FleetCAError, ValidationError
from fleetca.models import ExtensionRequest, ImportResult, ImportState, der_utf8_string


def test_der_utf8_string():
    assert der_utf8_string("true") == b"\x0c\x04true"
    decoded, rest = der_decoder.decode(der_utf8_string("caf\u00e9"), asn1Spec=char.UTF8String())
    assert str(decoded) == "caf\u00e9"
    assert rest == b""
    long_value = der_utf8_string("x" * 200)
    assert long_value[:3] == b"\x0c\x81\xc8"
    assert len(long_value) == 203


def test_extension_request_to_extension_type():
    request = ExtensionRequest.utf8("1.3.6.1.4.1.34380.1.1.1", "abc", critical=True)
    ext = request.to_extension_type()
    assert isinstance(ext, x509.UnrecognizedExtension)
    assert ext.oid.dotted_string == "1.3.6.1.4.1.34380.1.1.1"
    assert ext.value == b"\x0c\x03abc"


def test_validation_error_text():
    assert str(ValidationError("no CRLs detected")) == "no CRLs detected"
    error = ValidationError("could not parse certificate", "-----BEGIN CERTIFICATE-----")
    assert str(error) == "could not parse certificate:\n-----BEGIN CERTIFICATE-----"
    assert error == ValidationError("could not parse certificate", "-----BEGIN CERTIFICATE-----")
    assert isinstance(error, FleetCAError)


def test_wrap_keeps_the_cause():
    cause = ValueError("bad key size")
    error = CryptoError("could not generate key").wrap(cause)
    assert error.wrapped is cause


def test_import_result_reasons():
    result = ImportResult(ImportState.REJECTED, errors=[ValidationError("a"), ValidationError("b", "x")])
    assert not result.accepted
    assert result.reasons == ["a", "b"]
    assert ImportResult(ImportState.ACCEPTED).accepted
