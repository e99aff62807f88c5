import enum


class MovementKind(str, enum.Enum):
    RECEIVE = "receive"
    CONSUME = "consume"
    TRANSFER = "transfer"
    ASSIGN = "assign"
    CORRECT = "correct"


class Direction(str, enum.Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class DestinationPolicy(str, enum.Enum):
    COMMON_AREA = "common_area"
    LOCATION = "location"
    TRANSFER = "transfer"
    CONSUME = "consume"


COST_QUANTUM = "0.0001"
DEFAULT_LOG_PAGE_SIZE = 100
MAX_LOG_PAGE_SIZE = 1000
