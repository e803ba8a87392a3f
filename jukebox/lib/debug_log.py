"""Client debug log: lines the presentation shell asks us to keep on disk.

Off by default.  Enabling truncates the file and writes any seed lines.
"""

import json
import logging
import os

log = logging.getLogger(__name__)


class DebugLog:
    def __init__(self, path):
        self.path = str(path)
        self.enabled = False
        self._logger = logging.getLogger('jukebox.client')
        self._logger.propagate = False
        self._handler: logging.Handler | None = None

    def enable(self, lines=()):
        self.disable()
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
            handler = logging.FileHandler(self.path, mode='w', encoding='utf-8')
        except OSError as e:
            log.error("Failed to init debug file: %s", e)
            return
        handler.setFormatter(logging.Formatter('%(message)s'))
        self._handler = handler
        self._logger.addHandler(handler)
        self._logger.setLevel(logging.DEBUG)
        self.enabled = True
        for line in lines or ():
            self.write(line)

    def disable(self):
        self.enabled = False
        if self._handler:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None

    def write(self, line):
        if not self.enabled:
            return
        self._logger.debug("%s", line if isinstance(line, str) else json.dumps(line, default=str))
