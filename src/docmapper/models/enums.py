from enum import StrEnum


class Cardinality(StrEnum):
    ONE = "one"
    MANY = "many"


class Containment(StrEnum):
    EMBEDDED = "embedded"
    REFERENCED = "referenced"


class KeyStrategy(StrEnum):
    OWN_KEY = "own_key"
    SHARED_KEY = "shared_key"
    STORED_KEY = "stored_key"
    LINK = "link"


class LoadState(StrEnum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
