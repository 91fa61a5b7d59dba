# /gasprof/abis/paymaster.py
# Function signatures used against EIP-4337 paymasters (entry point v0.6).

USER_OPERATION_TUPLE = "(address,uint256,bytes,bytes,uint256,uint256,uint256,uint256,uint256,bytes,bytes)"

VALIDATE_PAYMASTER_USER_OP = f"validatePaymasterUserOp({USER_OPERATION_TUPLE},bytes32,uint256)"
POST_OP = "postOp(uint8,bytes,uint256)"
DEPOSIT = "deposit()"
ADD_STAKE = "addStake(uint32)"
WITHDRAW_TO = "withdrawTo(address,uint256)"
SUPPORTS_INTERFACE = "supportsInterface(bytes4)"

# Optional archetype getters; absence or revert is an expected outcome.
TOKEN = "token()"
VERIFYING_SIGNER = "verifyingSigner()"
STAKING_TOKEN = "stakingToken()"
IS_VALID_USER = "isValidUser(address)"
ACCEPTED_TOKENS = "acceptedTokens(address)"
OWNER = "owner()"

# IPaymaster interface id used with ERC-165.
IPAYMASTER_INTERFACE_ID = bytes.fromhex("3a55235d")

PAYMASTER_ENTRY_POINTS = [VALIDATE_PAYMASTER_USER_OP, POST_OP]

# Canonical v0.6 EntryPoint; paymaster entry points only accept calls from it.
ENTRY_POINT_V06 = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
