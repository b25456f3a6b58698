"""
Protocol constants for the Fair Protocol marketplace.

Addresses, fees and percentages here are the mainnet defaults; the values
actually used at runtime come from ProtocolConfig, which is seeded from
networks.json and may override any of them.
"""

PROTOCOL_NAME = "Fair Protocol"
PROTOCOL_VERSION = "1.0"

VAULT_ADDRESS = "tXd-BOaxmxtgswzwMLnryROAYlX5uDC9-XK2P4VNCQQ"
MARKETPLACE_ADDRESS = "RQFarhgXPXYkgRM0Lzv088MllseKQWEdnEiRUggteIo"
U_CONTRACT_ID = "KTzTXT_ANmF84fWEKHzWURD1LWd9QaFR9yfYUwH2Lxw"
U_DIVIDER = 1_000_000

# Flat fees in whole U
MARKETPLACE_FEE = "0.5"
SCRIPT_CREATION_FEE = "0.5"
OPERATOR_REGISTRATION_FEE = "0.05"

# Inference fee split; must sum to 1.0
OPERATOR_PERCENTAGE_FEE = 0.7
MARKETPLACE_PERCENTAGE_FEE = 0.1
CURATOR_PERCENTAGE_FEE = 0.05
CREATOR_PERCENTAGE_FEE = 0.15

# Operation names
MODEL_CREATION_PAYMENT = "Model Creation Payment"
MODEL_DELETION = "Model Deletion"
SCRIPT_CREATION_PAYMENT = "Script Creation Payment"
SCRIPT_DELETION = "Script Deletion"
REGISTER_OPERATION = "Operator Registration"
CANCEL_OPERATION = "Operator Cancellation"
OPERATOR_ACTIVE_PROOF = "Operator Active Proof"
SCRIPT_INFERENCE_REQUEST = "Script Inference Request"
SCRIPT_INFERENCE_RESPONSE = "Script Inference Response"
INFERENCE_PAYMENT = "Inference Payment"
CONVERSATION_START = "Conversation Start"

TRANSFER_FUNCTION = "transfer"
STABLE_DIFFUSION_OUTPUT = "stable-diffusion"
DEFAULT_N_IMAGES = 4

TX_ORIGIN = "Fair Protocol Python SDK"

ATOMIC_ASSET_CONTRACT_SOURCE_ID = "h9v17KHV4SXwdW2-JHU6a23f6R0YtbXZJJht8LfP8QM"
UDL_ID = "yRj4a5KMctX_uOmKWCFJIjmY8DeJcusVk6-HzLiM_t8"

# Operator must have answered its last N paid requests
N_PREVIOUS_REQUESTS = 7
# 30 minutes plus a 2 minute margin for clock skew
PROOF_WINDOW_SECONDS = 32 * 60

DEFAULT_PAGE_SIZE = 10
MAX_MESSAGE_SIZE = 100 * 1024
