class SettingsError(Exception):
    '''Base class for settings synchronization failures.'''


class StorageUnavailable(SettingsError):
    '''The persisted (or bundled default) document could not be read or written.'''


class CorruptDocument(SettingsError):
    '''The persisted document exists but its bytes do not parse.'''


class InvalidOrUnpersistable(SettingsError):
    '''A write was rejected: the body did not parse or could not be persisted.'''
