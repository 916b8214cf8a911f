import pytest

import pricewatch.main as main
from pricewatch.providers.base import ResolutionError
from pricewatch.utils.types import WalletBalance
from pricewatch.wallets import InvalidAddressError

ETH_ADDR = "0x" + "1f" * 20


def _fake_show(calls, exc=None):
    async def show(network, address):
        calls.append((network, address))
        if exc is not None:
            raise exc
        return WalletBalance(address, network, 2.0, 6000.0, 5400.0, "ETH")
    return show


def test_balance_cli_guesses_network_and_prints_valuation(monkeypatch, capsys):
    calls = []
    monkeypatch.setattr(main, "show_balance", _fake_show(calls))
    assert main.balance_cli([ETH_ADDR]) == 0
    assert calls == [("ethereum", ETH_ADDR)]
    out = capsys.readouterr().out
    assert "2.00000000 ETH" in out
    assert "$6,000.00" in out and "€5,400.00" in out

def test_balance_cli_explicit_network(monkeypatch):
    calls = []
    monkeypatch.setattr(main, "show_balance", _fake_show(calls))
    assert main.balance_cli([ETH_ADDR, "--network", "bsc"]) == 0
    assert calls == [("bsc", ETH_ADDR)]

def test_balance_cli_rejects_unknown_address_shape(monkeypatch):
    calls = []
    monkeypatch.setattr(main, "show_balance", _fake_show(calls))
    with pytest.raises(SystemExit) as exc:
        main.balance_cli(["not-an-address"])
    assert exc.value.code == 2
    assert calls == []

def test_balance_cli_invalid_address_for_network(monkeypatch):
    monkeypatch.setattr(main, "show_balance", _fake_show([], InvalidAddressError("not a valid bitcoin address")))
    with pytest.raises(SystemExit) as exc:
        main.balance_cli([ETH_ADDR, "--network", "bitcoin"])
    assert exc.value.code == 2

def test_balance_cli_lookup_failure(monkeypatch, capsys):
    err = ResolutionError("balance:ethereum", ETH_ADDR, {})
    monkeypatch.setattr(main, "show_balance", _fake_show([], err))
    assert main.balance_cli([ETH_ADDR]) == 1
    assert "balance lookup failed" in capsys.readouterr().err
