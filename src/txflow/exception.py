class TxflowError(Exception):
    ...
