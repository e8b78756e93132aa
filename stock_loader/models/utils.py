from enum import Enum


class ExitCode(Enum):
    SUCCESS = 0
    FAILURE = 1
