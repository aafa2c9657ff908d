import argparse
import logging
import sys

from . import __version__, digger, live
from .cluster import KubeCluster, detect_namespace, load_cluster_config
from .errors import ConfigurationError, KubedigError
from .keymap import Signal
from .log_streamer import ContainerStateMatcher, SourceMatcher
from .settings import Settings
from .terminal import Terminal

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(prog="kubedig", description="Interactive Kubernetes log viewer")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--context", help="Kubernetes context.")
    parser.add_argument("-n", "--namespace", help="Kubernetes namespace.")
    parser.add_argument("-p", "--pod-query", help="Regular expression to filter pods by name.")
    parser.add_argument(
        "--container-states",
        default="any",
        help="Comma separated container states to tail: any, running, terminated, waiting (default: any).",
    )
    parser.add_argument(
        "--log-retrieval-timeout",
        type=int,
        default=10,
        help="Timeout to read a next line from the log stream in milliseconds.",
    )
    parser.add_argument(
        "--render-interval",
        type=int,
        default=10,
        help="Interval to render a log line in milliseconds. "
        "Raise it to prevent flickering when a large volume of logs arrives.",
    )
    parser.add_argument(
        "-q",
        "--queue-capacity",
        type=int,
        default=1000,
        help="Number of log lines kept in memory for digging.",
    )
    parser.add_argument("--log-file", help="Write kubedig's own diagnostics to this file.")
    return parser


# --- Logging Configuration ---
def configure_logging(settings):
    """
    Send diagnostics to the configured log file. The terminal belongs to the
    UI, so without a log file records are discarded.
    """
    if settings.log_file:
        logging.basicConfig(
            filename=settings.log_file,
            level=settings.log_level,
            format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        )
    else:
        logging.getLogger().addHandler(logging.NullHandler())
    # Quieter Kubernetes client library logging for routine calls, unless debugging.
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def control_modes(terminal, matcher, open_stream, settings, sources=None):
    """
    Alternate between the live view and dig mode until the user quits.

    Every live session starts from a fresh container listing, except the
    first one when sources are passed in.
    """
    while True:
        if sources is None:
            sources = matcher.match()
        signal, records = live.run(terminal, sources, open_stream, settings)
        sources = None

        terminal.clear()
        if signal is Signal.QUIT:
            return
        if signal is Signal.TO_SEARCH:
            if digger.run(terminal, records) is Signal.QUIT:
                return
            logger.info("Leaving dig mode, restarting live view")
        else:
            logger.info("Restarting live view")


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_args(args)
        configure_logging(settings)

        if not sys.stdin.isatty():
            raise ConfigurationError("kubedig needs an interactive terminal")

        load_cluster_config(settings.context)
        namespace = detect_namespace(settings.namespace, settings.context)
        logger.info(f"Targeting Kubernetes namespace: {namespace}")

        cluster = KubeCluster(namespace)
        matcher = SourceMatcher(cluster, settings.pod_query, ContainerStateMatcher(settings.container_states))
        # Fail on an unreachable cluster before the terminal is taken over.
        sources = matcher.match()

        terminal = Terminal()
        with terminal.session():
            control_modes(terminal, matcher, cluster.stream_logs, settings, sources)
    except KubedigError as e:
        logger.error(f"{e}")
        print(f"kubedig: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
