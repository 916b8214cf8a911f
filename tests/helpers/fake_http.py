import json


class FakeResponse:
    """Enough of aiohttp.ClientResponse for the providers and the Telegram transport."""
    def __init__(self, status=200, payload=None, *, headers=None, text=None, bad_json=False):
        self.status = status
        self.payload = payload
        self.headers = dict(headers or {})
        self._text = text
        self.bad_json = bad_json

    async def json(self, content_type="application/json"):
        if self.bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.payload

    async def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self.payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Scripted aiohttp.ClientSession stand-in. Every request pops the next
    scripted item: a FakeResponse is returned, an exception is raised.
    Captures (method, url, kwargs) in `calls`.
    """
    def __init__(self, *script):
        self.script = list(script)
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if not self.script:
            raise AssertionError(f"unexpected request: {method} {url}")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)

    async def close(self):
        self.closed = True
