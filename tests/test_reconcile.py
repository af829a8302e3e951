import asyncio

import pytest

from conftest import DEAD, SKULL_OWNER, FakeChain, FakeIndexer, FakeMinter
from core.reconcile import MintCandidate, MintFlowController, MintStatus
from errors import MintError

OWNER = DEAD.lower()


def _controller(chain, ids, minter=None, limit=80):
    indexer = FakeIndexer({OWNER: [str(i) for i in ids]})
    return MintFlowController(chain, indexer, DEAD, minter=minter, limit=limit)


@pytest.mark.asyncio
async def test_unused_letter_is_mintable():
    chain = FakeChain()
    ctl = _controller(chain, [7])
    await ctl.refresh()

    it = ctl.get(7)
    assert it.status is MintStatus.NOT_MINTED
    assert it.mintable
    assert not it.loading
    assert ctl.mintable_count == 1


@pytest.mark.asyncio
async def test_minted_letter_resolves_its_skull():
    chain = FakeChain()
    chain.mark_minted(7, skull_id=3, nonce=5)
    chain.owners[3] = DEAD
    ctl = _controller(chain, [7])
    await ctl.refresh()

    it = ctl.get(7)
    assert it.status is MintStatus.MINTED
    assert it.minted and not it.mintable
    assert it.skull_token_id == 3
    assert it.skull_nonce == 5
    assert "7:5" in it.skull_svg
    assert it.owned_by(DEAD.upper().replace("0X", "0x"))
    assert ctl.snapshot()["items"][0]["skullOwnedByYou"] is True


@pytest.mark.asyncio
async def test_used_flag_without_skull_id_is_not_mintable():
    chain = FakeChain()
    chain.used[4] = True
    ctl = _controller(chain, [4])
    await ctl.refresh()

    it = ctl.get(4)
    assert it.status is MintStatus.MINTED_UNKNOWN_TARGET
    assert it.skull_token_id == 0
    assert not it.mintable


@pytest.mark.asyncio
async def test_skull_lookup_failure_keeps_skull_id():
    chain = FakeChain()
    chain.mark_minted(2, skull_id=9)
    chain.fail_owner = {9}
    ctl = _controller(chain, [2])
    await ctl.refresh()

    it = ctl.get(2)
    assert it.status is MintStatus.MINTED_UNKNOWN_TARGET
    assert it.skull_token_id == 9
    assert it.skull_owner is None
    assert not it.mintable


@pytest.mark.asyncio
async def test_failed_read_never_makes_a_letter_mintable():
    chain = FakeChain()
    chain.fail_reads = {1}
    ctl = _controller(chain, [1])
    await ctl.refresh()

    it = ctl.get(1)
    assert it.status is MintStatus.UNKNOWN
    assert not it.loading
    assert not it.mintable


@pytest.mark.asyncio
async def test_failed_read_keeps_the_previous_state():
    chain = FakeChain()
    chain.mark_minted(1, skull_id=1)
    ctl = _controller(chain, [1, 2])
    await ctl.refresh()
    assert ctl.get(1).status is MintStatus.MINTED
    assert ctl.get(2).status is MintStatus.NOT_MINTED

    chain.fail_reads = {1, 2}
    await ctl.reconcile()
    assert ctl.get(1).status is MintStatus.MINTED
    assert ctl.get(2).status is MintStatus.NOT_MINTED
    assert not any(it.loading for it in ctl.items)


@pytest.mark.asyncio
async def test_consumed_letter_stays_consumed_until_refresh():
    chain = FakeChain()
    chain.mark_minted(5, skull_id=2)
    ctl = _controller(chain, [5])
    await ctl.refresh()
    assert ctl.get(5).minted

    # a lagging node reports the letter unused again
    chain.used.clear()
    chain.skull_of.clear()
    await ctl.reconcile()
    assert ctl.get(5).minted
    assert not ctl.get(5).mintable

    await ctl.refresh()
    assert ctl.get(5).status is MintStatus.NOT_MINTED


@pytest.mark.asyncio
async def test_only_the_first_page_is_reconciled():
    chain = FakeChain()
    ctl = _controller(chain, range(1, 101), limit=80)
    await ctl.refresh()

    checked = {tid for name, tid in chain.calls if name == "usedLetterToken"}
    assert checked == set(range(1, 81))
    assert all(ctl.get(i).status is MintStatus.NOT_MINTED for i in range(1, 81))
    tail = [ctl.get(i) for i in range(81, 101)]
    assert all(it.status is MintStatus.UNKNOWN and not it.loading for it in tail)
    assert ctl.mintable_count == 80


@pytest.mark.asyncio
async def test_letters_sorted_numerically():
    chain = FakeChain()
    ctl = _controller(chain, ["100", "9", "25"])
    await ctl.refresh()
    assert [it.letter_token_id for it in ctl.items] == [9, 25, 100]


@pytest.mark.asyncio
async def test_mint_then_every_letter_is_reconciled_again():
    chain = FakeChain()
    minter = FakeMinter(chain)
    ctl = _controller(chain, [1, 2], minter=minter)
    await ctl.refresh()
    chain.calls.clear()

    result = await ctl.mint(2, "0.01")
    assert result.skull_token_id == 1
    assert minter.minted == [(2, "0.01")]
    assert ctl.get(2).status is MintStatus.MINTED
    assert ctl.get(1).status is MintStatus.NOT_MINTED
    assert {tid for name, tid in chain.calls if name == "usedLetterToken"} == {1, 2}


@pytest.mark.asyncio
async def test_mint_rejections():
    chain = FakeChain()
    chain.mark_minted(1, skull_id=1)
    chain.fail_reads = {3}
    ctl = _controller(chain, [1, 2, 3], minter=FakeMinter(chain))
    await ctl.refresh()

    with pytest.raises(MintError, match="already minted"):
        await ctl.mint(1)
    with pytest.raises(MintError, match="don’t own"):
        await ctl.mint(99)
    with pytest.raises(MintError, match="not known"):
        await ctl.mint(3)

    readonly = _controller(chain, [2])
    await readonly.refresh()
    with pytest.raises(MintError):
        await readonly.mint(2)


def test_display_name_truncates_long_ids():
    assert MintCandidate(letter_token_id=12).display_name() == "Letter #12"
    assert MintCandidate(letter_token_id=1, letter_name="Dear Skull").display_name() == "Dear Skull"
    long_id = int("1234567890" * 3)
    assert MintCandidate(letter_token_id=long_id).display_name() == "Letter #1234567890…34567890"


def test_candidate_dict_uses_decimal_strings():
    d = MintCandidate(letter_token_id=2 ** 70, skull_owner=SKULL_OWNER).to_dict(DEAD)
    assert d["letterTokenId"] == str(2 ** 70)
    assert d["skullOwnedByYou"] is False
    assert d["status"] == "unknown"
    assert d["mintable"] is False


@pytest.mark.asyncio
async def test_concurrent_mints_of_one_letter_submit_once():
    chain = FakeChain()
    minter = FakeMinter(chain, delay=0.05)
    ctl = _controller(chain, [7], minter=minter)
    await ctl.refresh()

    results = await asyncio.gather(ctl.mint(7), ctl.mint(7), return_exceptions=True)

    assert minter.minted == [(7, "0")]
    errors = [r for r in results if isinstance(r, MintError)]
    assert len(errors) == 1
    assert "in progress" in errors[0].message
    assert ctl.get(7).status is MintStatus.MINTED


@pytest.mark.asyncio
async def test_letter_is_not_mintable_while_its_mint_is_pending():
    chain = FakeChain()
    ctl = _controller(chain, [7, 8], minter=FakeMinter(chain, delay=0.05))
    await ctl.refresh()

    task = asyncio.create_task(ctl.mint(7))
    await asyncio.sleep(0)
    assert ctl.get(7).loading
    assert not ctl.get(7).mintable
    # a reconcile in the middle does not reopen it
    await ctl.reconcile()
    assert not ctl.get(7).mintable
    assert ctl.get(8).mintable

    await task
    assert ctl.get(7).minted


@pytest.mark.asyncio
async def test_failed_mint_releases_the_letter():
    chain = FakeChain()
    minter = FakeMinter(chain, fail=MintError("Mint is currently closed."))
    ctl = _controller(chain, [7], minter=minter)
    await ctl.refresh()

    with pytest.raises(MintError, match="closed"):
        await ctl.mint(7)
    assert ctl.get(7).mintable

    minter.fail = None
    await ctl.mint(7)
    assert minter.minted == [(7, "0")]
