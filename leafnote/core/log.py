################################################################################################

'''

Copyright 2025 Aaron Vose (avose@aaronvose.net)

Licensed under the LGPL v2.1; see the file 'LICENSE' for details.

This file holds the code for the info / debug logger shared by the store,
the background IO worker and the command line front end.

'''

################################################################################################

import inspect
import threading
from datetime import datetime
from typing import List, Optional, TextIO, Tuple

################################################################################################

class LogManager():
    __log = None
    __lock = threading.Lock()

    def __init__(self, verbosity: int = 0, limit: int = 10000):
        with LogManager.__lock:
            if LogManager.__log is None:
                now = datetime.now().strftime("%m/%d/%Y %H:%M:%S")
                LogManager.__log = [(now, "Begin leafnote Log")]
        self.verbosity = verbosity
        self.limit = limit
        self.stream: Optional[TextIO] = None

    def add(self, text: str):
        now = datetime.now().strftime("%m/%d/%Y %H:%M:%S")
        with LogManager.__lock:
            LogManager.__log.append((now, text))
            # Keep the log bounded; the oldest entries go first.
            overflow = len(LogManager.__log) - self.limit
            if overflow > 0:
                del LogManager.__log[:overflow]
            if self.stream is not None:
                self.stream.write(f"[{now}] {text}\n")
                self.stream.flush()

    def debug(self, text: str, level: int = 0):
        if self.verbosity >= level:
            # Record the caller's filename (IO worker tasks log from many modules).
            frame = inspect.currentframe()
            caller = frame.f_back if frame is not None else None
            if caller is not None:
                filename = caller.f_code.co_filename.replace('\\', '/').split('/')[-1]
            else:
                filename = "unknown"
            self.add(f"[{filename}] {text}")

    def get(self, index: int = None):
        with LogManager.__lock:
            if index is not None:
                return LogManager.__log[index]
            return LogManager.__log.copy()

    def find(self, needle: str) -> List[Tuple[str, str]]:
        """Return the entries whose message contains `needle`."""
        with LogManager.__lock:
            return [entry for entry in LogManager.__log if needle in entry[1]]

    def count(self):
        with LogManager.__lock:
            return len(LogManager.__log)

    def set_verbosity(self, verbosity: int = 0):
        self.verbosity = verbosity

    def set_stream(self, stream: Optional[TextIO]):
        """Mirror every new entry to `stream` (e.g. sys.stderr); None disables."""
        self.stream = stream

    def clear(self):
        """Clear all log entries."""
        with LogManager.__lock:
            if LogManager.__log is not None:
                LogManager.__log.clear()
                now = datetime.now().strftime("%m/%d/%Y %H:%M:%S")
                LogManager.__log.append((now, "Log cleared"))

    def write_to_file(self, filepath: str):
        """Write all log entries to a file."""
        try:
            entries = self.get()
            with open(filepath, 'w', encoding='utf-8') as f:
                for timestamp, message in entries:
                    f.write(f"[{timestamp}] {message}\n")
            self.add(f"Log written to file: {filepath}")
        except OSError as e:
            self.add(f"Failed to write log to file '{filepath}': {e}")

################################################################################################

Log = LogManager()

################################################################################################
