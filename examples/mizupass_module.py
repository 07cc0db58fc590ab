"""
MizuPass deployment, written with the Python builder.

    omni-ignition deploy examples/mizupass_module.py --artifacts examples/artifacts
"""

from omni_ignition import build_module

PLATFORM_WALLET = "0xfd1AF2826012385a84A8E9BE8a1586293FB3980B"


def _define(m):
    identity = m.contract("MizuPassIdentity")
    m.contract("StealthAddressManager")
    mock_jpym = m.contract("MockJPYM")

    registry = m.contract("EventRegistry", [identity])

    m.call(registry, "setJPYMAddress", [mock_jpym])
    m.call(registry, "setPlatformWallet", [m.get_parameter("platformWallet", PLATFORM_WALLET)])


module = build_module("MizuPassModule", _define)
