import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype
import pytest

from dnsrelay.query_context import EDNS0_SIZE, Context, Opt, reg_key


def _query(edns=False, do=False, payload=4096):
    q = dns.message.make_query("example.com.", "A")
    if edns:
        q.use_edns(0, dns.flags.DO if do else 0, payload)
    else:
        q.use_edns(False)
    return q


def test_query_without_edns_gets_own_opt():
    ctx = Context(_query())
    assert ctx.client_opt is None
    assert ctx.resp_opt is None
    assert ctx.query.edns == 0
    assert ctx.query.payload == EDNS0_SIZE
    assert ctx.query_opt.udp_size == EDNS0_SIZE


def test_client_opt_is_swapped_out():
    ctx = Context(_query(edns=True, do=True, payload=4096))
    assert ctx.client_opt.udp_size == 4096
    assert ctx.client_opt.do is True
    assert ctx.query.payload == EDNS0_SIZE
    assert ctx.query.ednsflags & dns.flags.DO == 0


def test_resp_opt_copies_do_bit():
    with_do = Context(_query(edns=True, do=True))
    without_do = Context(_query(edns=True, do=False))
    assert with_do.resp_opt.do is True
    assert with_do.resp_opt.udp_size == EDNS0_SIZE
    assert without_do.resp_opt.do is False


def test_question():
    ctx = Context(_query())
    q = ctx.question()
    assert q.name == dns.name.from_text("example.com.")
    assert q.rdtype == dns.rdatatype.A


def test_query_without_question_rejected():
    with pytest.raises(ValueError):
        Context(dns.message.Message())


def test_set_response_pops_upstream_opt():
    ctx = Context(_query(edns=True))
    resp = dns.message.make_response(ctx.query)
    resp.use_edns(0, 0, 4000)
    ctx.set_response(resp)
    assert ctx.response is resp
    assert resp.edns == -1
    assert ctx.upstream_opt.udp_size == 4000

    ctx.set_response(None)
    assert ctx.response is None
    assert ctx.upstream_opt is None


def test_values_and_marks():
    ctx = Context(_query())
    key = reg_key()
    ctx.store_value(key, "v")
    assert ctx.get_value(key) == "v"
    ctx.delete_value(key)
    with pytest.raises(KeyError):
        ctx.get_value(key)

    ctx.set_mark(5)
    assert ctx.has_mark(5)
    ctx.delete_mark(5)
    assert not ctx.has_mark(5)


def test_reg_key_is_unique_and_growing():
    a = reg_key()
    b = reg_key()
    assert b > a


def test_context_ids_grow():
    first = Context(_query())
    second = Context(_query())
    assert second.id > first.id


def test_copy_is_independent():
    ctx = Context(_query(edns=True, do=True))
    key = reg_key()
    ctx.store_value(key, 1)
    ctx.set_mark(3)
    ctx.set_response(dns.message.make_response(ctx.query))

    dup = ctx.copy()
    assert dup.id == ctx.id
    assert dup.get_value(key) == 1
    assert dup.has_mark(3)
    assert dup.resp_opt == ctx.resp_opt
    assert dup.resp_opt is not ctx.resp_opt

    original_id = ctx.query.id
    dup.query.id = (original_id + 1) % 65536
    dup.set_mark(9)
    dup.store_value(key, 2)
    dup.response.set_rcode(dns.rcode.SERVFAIL)
    assert ctx.query.id == original_id
    assert not ctx.has_mark(9)
    assert ctx.get_value(key) == 1
    assert ctx.response.rcode() == dns.rcode.NOERROR


def test_opt_copy_has_own_options():
    opt = Opt(options=["a"])
    dup = opt.copy()
    dup.options.append("b")
    dup.do = True
    assert opt.options == ["a"]
    assert opt.do is False


def test_info_summary():
    ctx = Context(_query())
    info = ctx.info()
    assert info["uqid"] == ctx.id
    assert info["qname"] == "example.com."
    assert info["qtype"] == dns.rdatatype.A
    assert "rcode" not in info
    assert info["elapsed"] >= 0

    resp = dns.message.make_response(ctx.query)
    resp.set_rcode(dns.rcode.NXDOMAIN)
    ctx.set_response(resp)
    assert ctx.info()["rcode"] == dns.rcode.NXDOMAIN