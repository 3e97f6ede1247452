#!/usr/bin/env python
# coding=utf8

import sys
import logging

from chatfilter import runner
from chatfilter.config import load_config, ConfigError
from chatfilter.logging import setup_logging

USAGE = "Usage: ./ChatFilter.py <start|debug|help> [config.json]\n"


if __name__ == '__main__':
    try:
        cmd = sys.argv[1].lower()
    except IndexError:
        cmd = None

    if cmd not in ('start', 'debug'):
        print(USAGE)
        sys.exit(runner.ErrorCodes.OK if cmd == 'help' else runner.ErrorCodes.USAGE)

    config_file = sys.argv[2] if len(sys.argv) > 2 else 'config.json'

    # load configuration
    try:
        config = load_config(config_file)
    except (OSError, ValueError, ConfigError) as e:
        print(str(e), file=sys.stderr)
        sys.exit(runner.ErrorCodes.CFG_FILE)

    if cmd == 'start':
        # chat goes to stdout, so the console log goes to stderr only when asked for
        setup_logging(logging.getLogger(), config, console=False)
    else:
        print("Starting in debug mode...", file=sys.stderr)
        setup_logging(logging.getLogger(), config, debug=True)

    sys.exit(runner.run(config))
