import configparser
import errno
import logging
import optparse
import os
import sys
import typing as t

from gitreceive import util

log = logging.getLogger(__name__)

DEFAULT_CONFIG = "~/.gitreceive.conf"

_level_names = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


class CannotReadConfigError(Exception):
    """Unable to read config file."""

    def __str__(self) -> str:
        return ": ".join([self.__doc__, *self.args])


class ConfigFileDoesNotExistError(CannotReadConfigError):
    """Configuration does not exist."""


class App:
    name: t.Optional[str] = None

    def __init__(self, gateway_path: t.Optional[str] = None) -> None:
        # hooks and forced commands are written with this path, so it
        # has to stay valid whatever the working directory is
        if gateway_path is None:
            gateway_path = sys.argv[0]
        self.gateway_path = os.path.abspath(gateway_path)

    @classmethod
    def run(cls, argv: t.Optional[list[str]] = None, gateway_path: t.Optional[str] = None) -> None:
        cls(gateway_path=gateway_path).main(argv)

    def main(self, argv: t.Optional[list[str]] = None) -> None:
        self.setup_basic_logging()
        parser = self.create_parser()
        options, args = parser.parse_args(argv)
        cfg = configparser.ConfigParser(interpolation=None)
        try:
            self.read_config(options, cfg)
        except ConfigFileDoesNotExistError as e:
            # only a config file asked for by name has to exist
            if options.config != os.path.expanduser(DEFAULT_CONFIG):
                log.error(str(e))  # noqa: TRY400
                sys.exit(1)
        except CannotReadConfigError as e:
            log.error(str(e))  # noqa: TRY400
            sys.exit(1)
        self.setup_logging(cfg)
        self.handle_args(parser, cfg, options, args)

    def setup_basic_logging(self) -> None:
        logging.basicConfig()

    def create_parser(self) -> optparse.OptionParser:
        prog = os.path.basename(self.gateway_path)
        if self.name is not None:
            prog = f"{prog} {self.name}"
        parser = optparse.OptionParser(prog=prog)
        parser.set_defaults(config=os.path.expanduser(DEFAULT_CONFIG))
        parser.add_option(
            "--config",
            metavar="FILE",
            help="read config from FILE",
        )
        return parser

    def read_config(self, options: optparse.Values, cfg: configparser.ConfigParser) -> None:
        try:
            with open(options.config) as fp:
                cfg.read_file(fp)
        except OSError as e:
            if e.errno == errno.ENOENT:
                raise ConfigFileDoesNotExistError(options.config) from e
            raise CannotReadConfigError(options.config, e.strerror or str(e)) from e
        except configparser.Error as e:
            raise CannotReadConfigError(options.config, str(e)) from e

    def setup_logging(self, cfg: configparser.ConfigParser) -> None:
        log_level = _level_names.get(util.get(cfg, util.SECTION, "loglevel", default=""), logging.INFO)
        logging.root.setLevel(log_level)

    def handle_args(
        self,
        parser: optparse.OptionParser,
        cfg: configparser.ConfigParser,  # noqa: ARG002
        options: optparse.Values,  # noqa: ARG002
        args: list[str],
    ) -> None:
        if args:
            parser.error("not expecting arguments")
