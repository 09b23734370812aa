"""Identity of a push, carried from ``gitreceive run`` to ``gitreceive hook``.

git runs the pre-receive hook as a grandchild of the dispatcher, so the only
channel between the two is the process environment.
"""

import typing as t

ENV_USER = "RECEIVE_USER"
ENV_FINGERPRINT = "RECEIVE_FINGERPRINT"
ENV_REPO = "RECEIVE_REPO"
ENV_HOME = "GITHOME"


class ConfigurationDefectError(Exception):
    """Delivery context is incomplete"""

    def __str__(self) -> str:
        return ": ".join([self.__doc__, *self.args])


class DeliveryContext(t.NamedTuple):
    user: str
    fingerprint: str
    repo: str
    home: str

    def to_environ(self) -> dict[str, str]:
        return {
            ENV_USER: self.user,
            ENV_FINGERPRINT: self.fingerprint,
            ENV_REPO: self.repo,
            ENV_HOME: self.home,
        }

    @classmethod
    def from_environ(cls, environ: t.Mapping[str, str]) -> "DeliveryContext":
        """Load the context, insisting every variable is present and non-empty."""
        names = (ENV_USER, ENV_FINGERPRINT, ENV_REPO, ENV_HOME)
        missing = [name for name in names if not environ.get(name)]
        if missing:
            raise ConfigurationDefectError(f"missing {', '.join(missing)}")
        return cls(*(environ[name] for name in names))


def augment_environ(environ: t.Mapping[str, str], context: DeliveryContext) -> dict[str, str]:
    """Copy of ``environ`` with the delivery context layered on top."""
    env = {}
    env.update(environ)
    env.update(context.to_environ())
    return env
