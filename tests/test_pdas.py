from solders.pubkey import Pubkey

from adrena.perps.constants import ASSOCIATED_TOKEN_PROGRAM, DEFAULT_PROGRAM_ID, NATIVE_MINT, TOKEN_PROGRAM
from adrena.perps.pdas import AddressRegistry, PositionKey, Side, derive_ata


def test_derivation_is_deterministic_across_registries():
    a, b = AddressRegistry(), AddressRegistry()
    assert a.cortex == b.cortex
    assert a.main_pool == b.main_pool
    assert a.lp_token_mint == b.lp_token_mint
    assert a.cortex == Pubkey.find_program_address([b"cortex"], DEFAULT_PROGRAM_ID)[0]


def test_derivations_are_memoized():
    registry = AddressRegistry()
    registry.cortex
    size = registry.cache_size()
    registry.cortex
    assert registry.cache_size() == size
    registry.transfer_authority
    assert registry.cache_size() == size + 1


def test_position_seeds_include_side_byte():
    registry = AddressRegistry()
    owner = Pubkey.new_unique()
    custody = registry.custody(NATIVE_MINT)
    expected = Pubkey.find_program_address(
        [b"position", bytes(owner), bytes(registry.main_pool), bytes(custody), bytes([1])],
        DEFAULT_PROGRAM_ID,
    )[0]
    assert registry.position(owner, custody, Side.LONG) == expected
    assert registry.position(owner, custody, "short") != expected


def test_position_for_derives_custody_from_mint():
    registry = AddressRegistry()
    owner = Pubkey.new_unique()
    key = PositionKey(owner, NATIVE_MINT, Side.SHORT)
    assert registry.position_for(key) == registry.position(owner, registry.custody(NATIVE_MINT), Side.SHORT)
    assert registry.position_for(key) is registry.position_for(key)


def test_associated_token_address_matches_ata_program():
    registry = AddressRegistry()
    owner = Pubkey.new_unique()
    expected = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM), bytes(NATIVE_MINT)], ASSOCIATED_TOKEN_PROGRAM
    )[0]
    assert registry.associated_token_address(owner, NATIVE_MINT) == expected
    assert derive_ata(owner, NATIVE_MINT) == expected


def test_side_parse():
    assert Side.parse("Long") is Side.LONG
    assert Side.parse(2) is Side.SHORT
    assert Side.SHORT.label == "short"
