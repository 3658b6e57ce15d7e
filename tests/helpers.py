import re

CODE_RE = re.compile(r'\b(\d{6})\b')


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, amount):
        self.now += amount


def code_from(message):
    return CODE_RE.search(message['body']).group(1)


def refresh_cookie_header(response, name='refreshToken'):
    for header in response.headers.getlist('Set-Cookie'):
        if header.startswith(f'{name}='):
            return header
    return None


def refresh_cookie_value(response, name='refreshToken'):
    header = refresh_cookie_header(response, name)
    if header is None:
        return None
    return header.split(';', 1)[0].split('=', 1)[1]
