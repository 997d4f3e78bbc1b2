# Reads and writes the .cts/config INI file (remote, user identity, commit policy)

import configparser
from pathlib import Path

from .errors import InvalidInput
from .objects import Author

DEFAULT_REMOTE_URL = "http://localhost:8000/api"

DEFAULTS = {
    "remote": {"url": DEFAULT_REMOTE_URL, "repository": "", "timeout": "30"},
    "user": {},
    "core": {"allow_empty_commits": "false"},
}


def split_key(key):  # 'section.option' -> ('section', 'option')
    section, dot, option = key.partition(".")
    if not dot or not section or not option:
        raise InvalidInput(f"invalid key format {key!r}, should be 'section.key'", field="key")
    return section, option


class Config:
    def __init__(self, path):
        self.path = Path(path)
        self.parser = configparser.ConfigParser()
        self.parser.read_dict(DEFAULTS)
        if self.path.exists():
            self.parser.read(self.path)

    def get(self, key, fallback=None):
        section, option = split_key(key)
        return self.parser.get(section, option, fallback=fallback)

    def set(self, key, value):
        section, option = split_key(key)
        if not self.parser.has_section(section):
            self.parser.add_section(section)
        self.parser.set(section, option, str(value))
        self.save()

    def save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            self.parser.write(f)

    @property
    def remote_url(self):
        return self.parser.get("remote", "url")

    @property
    def repository_id(self):
        return self.parser.get("remote", "repository") or None

    @property
    def timeout(self):
        try:
            return self.parser.getfloat("remote", "timeout")
        except ValueError:
            raise InvalidInput("remote.timeout must be a number", field="remote.timeout")

    @property
    def allow_empty_commits(self):
        try:
            return self.parser.getboolean("core", "allow_empty_commits")
        except ValueError:
            raise InvalidInput("core.allow_empty_commits must be a boolean", field="core.allow_empty_commits")

    def author(self):  # user.name / user.email as an Author, required to commit
        name = self.parser.get("user", "name", fallback=None)
        email = self.parser.get("user", "email", fallback=None)
        if not name or not email:
            raise InvalidInput("author identity unknown: set user.name and user.email", field="user")
        return Author(name, email)
