from typing import NewType

UserOperationHash = NewType('UserOperationHash', str)
SafeOperationHash = NewType('SafeOperationHash', str)
TransactionHash = NewType('TransactionHash', str)
Address = NewType('Address', str)
