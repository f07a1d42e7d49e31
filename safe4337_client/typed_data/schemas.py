from .eip712 import TypedSchema

# Message verified by the Safe4337Module, the domain verifying contract is
# the module address and not the account
SAFE_OP_TYPES: TypedSchema = {
    "SafeOp": [
        {"type": "address", "name": "safe"},
        {"type": "uint256", "name": "nonce"},
        {"type": "bytes", "name": "initCode"},
        {"type": "bytes", "name": "callData"},
        {"type": "uint256", "name": "callGasLimit"},
        {"type": "uint256", "name": "verificationGasLimit"},
        {"type": "uint256", "name": "preVerificationGas"},
        {"type": "uint256", "name": "maxFeePerGas"},
        {"type": "uint256", "name": "maxPriorityFeePerGas"},
        {"type": "bytes", "name": "paymasterAndData"},
        {"type": "uint48", "name": "validAfter"},
        {"type": "uint48", "name": "validUntil"},
        {"type": "address", "name": "entryPoint"},
    ]
}

# Account creation parameters committed to by the passkey launchpad
SAFE_INIT_TYPES: TypedSchema = {
    "SafeInit": [
        {"type": "address", "name": "singleton"},
        {"type": "address", "name": "signerFactory"},
        {"type": "bytes", "name": "signerData"},
        {"type": "address", "name": "setupTo"},
        {"type": "bytes", "name": "setupData"},
        {"type": "address", "name": "fallbackHandler"},
    ]
}

SAFE_INIT_OP_TYPES: TypedSchema = {
    "SafeInitOp": [
        {"type": "bytes32", "name": "userOpHash"},
        {"type": "uint48", "name": "validAfter"},
        {"type": "uint48", "name": "validUntil"},
        {"type": "address", "name": "entryPoint"},
    ]
}

ALLOWANCE_TRANSFER_TYPES: TypedSchema = {
    "AllowanceTransfer": [
        {"type": "address", "name": "safe"},
        {"type": "address", "name": "token"},
        {"type": "address", "name": "to"},
        {"type": "uint96", "name": "amount"},
        {"type": "address", "name": "paymentToken"},
        {"type": "uint96", "name": "payment"},
        {"type": "uint16", "name": "nonce"},
    ]
}

SAFE_MESSAGE_TYPES: TypedSchema = {
    "SafeMessage": [
        {"type": "bytes", "name": "message"},
    ]
}
