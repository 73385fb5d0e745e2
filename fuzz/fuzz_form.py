import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from parse_multipart.exceptions import MultipartParseError
    from parse_multipart.multipart import parse


def parse_random_body(fdp: EnhancedDataProvider) -> None:
    parse(fdp.ConsumeRandomBytes(), fdp.ConsumeBoundary())


def parse_file_round_trip(fdp: EnhancedDataProvider) -> None:
    boundary = fdp.ConsumeBoundary()
    payload = fdp.ConsumeRandomBytes()
    if b"\r\n--" + boundary in b"\r\n" + payload:
        return

    body = (
        b"--" + boundary + b"\r\n"
        b'Content-Disposition: form-data; name="file"; filename="file.bin"\r\n'
        b"Content-Type: application/octet-stream\r\n"
        b"\r\n" + payload + b"\r\n"
        b"--" + boundary + b"--\r\n"
    )
    parts = parse(body, boundary)
    assert len(parts) == 1
    assert parts[0].data == payload


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [parse_random_body, parse_file_round_trip]
    target = fdp.PickValueInList(targets)

    try:
        target(fdp)
    except MultipartParseError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
