import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from parse_multipart.multipart import get_boundary


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    boundary = get_boundary(fdp.ConsumeRandomString())
    assert boundary == boundary.strip()
    assert ";" not in boundary


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
