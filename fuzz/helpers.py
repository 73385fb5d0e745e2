import atheris


class EnhancedDataProvider(atheris.FuzzedDataProvider):
    def ConsumeRandomBytes(self) -> bytes:
        return self.ConsumeBytes(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeRandomString(self) -> str:
        return self.ConsumeUnicodeNoSurrogates(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeBoundary(self) -> bytes:
        # Boundaries are 1-70 characters and never contain a line break.
        boundary = self.ConsumeBytes(self.ConsumeIntInRange(1, 70)).replace(b"\r", b"").replace(b"\n", b"")
        return boundary or b"boundary"
