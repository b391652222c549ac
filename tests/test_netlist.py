import io
from ipaddress import ip_address, ip_network

import pytest

from dnsrelay.netlist import IPList, load_from_reader, load_from_text

MERGE_DATA = """
192.168.0.0/32 # merged
192.168.0.0/24 # merged
192.168.0.0/16
192.168.1.1/24 # merged
192.168.9.24/24 # merged
192.168.3.0/24 # merged
192.169.0.0/16
104.16.0.0/12
"""

CONTAINS_DATA = """
# comment line
1.0.0.0/24 additional strings should be ignored 
2.0.0.0/23 # comment
3.0.0.0

2000:0000::/32
2000:2000::1
"""


@pytest.fixture
def merged_list():
    lst = IPList()
    load_from_reader(lst, io.StringIO(MERGE_DATA))
    lst.sort()
    return lst


@pytest.fixture
def contains_list():
    lst = IPList()
    load_from_reader(lst, io.StringIO(CONTAINS_DATA))
    lst.sort()
    return lst


def test_sort_merges(merged_list):
    assert len(merged_list) == 3


@pytest.mark.parametrize(
    "ip, want",
    [
        ("192.167.255.255", False),
        ("192.168.0.0", True),
        ("192.168.1.1", True),
        ("192.168.9.255", True),
        ("192.168.255.255", True),
        ("192.169.1.1", True),
        ("192.170.1.1", False),
        ("1.1.1.1", False),
        ("104.16.67.38", True),
        ("104.32.67.38", False),
    ],
)
def test_sort_and_merge_match(merged_list, ip, want):
    assert merged_list.match(ip_address(ip)) is want


@pytest.mark.parametrize(
    "ip, want",
    [
        ("1.0.0.0", True),
        ("1.0.0.1", True),
        ("1.0.1.0", False),
        ("2.0.0.0", True),
        ("2.0.1.255", True),
        ("2.0.2.0", False),
        ("3.0.0.0", True),
        ("2000:0000::", True),
        ("2000:0000::1", True),
        ("2000:0000:1::", True),
        ("2000:0001::", False),
        ("2000:2000::1", True),
    ],
)
def test_new_and_contains(contains_list, ip, want):
    assert contains_list.match(ip_address(ip)) is want


def test_contains_requires_sort():
    lst = IPList()
    lst.append(ip_network("10.0.0.0/8"))
    with pytest.raises(RuntimeError):
        lst.contains("10.1.1.1")


def test_append_after_sort_unsorts(contains_list):
    contains_list.append("10.0.0.0/8")
    with pytest.raises(RuntimeError):
        contains_list.contains("10.0.0.1")
    contains_list.sort()
    assert contains_list.contains("10.0.0.1") is True


def test_none_address_does_not_match(contains_list):
    assert contains_list.contains(None) is False


def test_v4_mapped_address_matches_v4_network(contains_list):
    assert contains_list.contains("::ffff:1.0.0.1") is True


def test_empty_list_matches_nothing():
    lst = IPList()
    lst.sort()
    assert len(lst) == 0
    assert lst.contains("1.2.3.4") is False


def test_load_from_text_single_address():
    lst = IPList()
    load_from_text(lst, "8.8.8.8")
    lst.sort()
    assert lst.contains("8.8.8.8") is True
    assert lst.contains("8.8.8.9") is False


def test_load_from_text_invalid():
    with pytest.raises(ValueError):
        load_from_text(IPList(), "not-an-ip")


def test_load_from_reader_reports_line():
    with pytest.raises(ValueError, match="line #3"):
        load_from_reader(IPList(), io.StringIO("1.2.3.4\n\nbad\n"))