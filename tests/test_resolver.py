import pytest

from conftest import make_ctx
from solc_gateway.errors import (
    DisallowedHost,
    MissingPackageVersion,
    NoBaseContext,
    UnsupportedSpecifier,
)
from solc_gateway.resolver import canonical_url, resolve_specifier


def test_absolute_url_on_allow_list(ctx):
    assert resolve_specifier("https://host/A.sol", None, ctx) == "https://host/A.sol"


def test_absolute_url_is_canonicalized(ctx):
    url = resolve_specifier("https://HOST/lib/../A.sol#frag", None, ctx)
    assert url == "https://host/A.sol"


def test_disallowed_host_is_rejected(ctx):
    with pytest.raises(DisallowedHost) as ei:
        resolve_specifier("https://evil.example/x.sol", None, ctx, referrer="entry.sol")
    assert ei.value.host == "evil.example"
    assert ei.value.referrer == "entry.sol"
    assert "evil.example" in str(ei.value)


def test_host_with_port_must_match_exactly(ctx):
    with pytest.raises(DisallowedHost):
        resolve_specifier("https://host:8443/A.sol", None, ctx)


def test_github_shorthand_expands_to_raw_content(ctx):
    url = resolve_specifier("github:OpenZeppelin/openzeppelin-contracts@v5.0.2/contracts/token/ERC20/ERC20.sol", None, ctx)
    assert url == (
        "https://raw.githubusercontent.com/OpenZeppelin/openzeppelin-contracts/v5.0.2/contracts/token/ERC20/ERC20.sol"
    )


def test_malformed_github_shorthand(ctx):
    with pytest.raises(UnsupportedSpecifier):
        resolve_specifier("github:owner/repo/path.sol", None, ctx)


def test_github_shorthand_requires_raw_host_on_allow_list():
    ctx = make_ctx(allowed_hosts=frozenset({"unpkg.com"}))
    with pytest.raises(DisallowedHost):
        resolve_specifier("github:o/r@main/A.sol", None, ctx)


def test_npm_explicit_version(ctx):
    url = resolve_specifier("npm:@openzeppelin/contracts@5.0.2/token/ERC20/ERC20.sol", None, ctx)
    assert url == "https://unpkg.com/@openzeppelin/contracts@5.0.2/token/ERC20/ERC20.sol"


def test_npm_unscoped_explicit_version(ctx):
    url = resolve_specifier("npm:solmate@6.2.0/src/tokens/ERC20.sol", None, ctx)
    assert url == "https://unpkg.com/solmate@6.2.0/src/tokens/ERC20.sol"


def test_bare_scoped_package_uses_package_versions():
    ctx = make_ctx(package_versions={"@openzeppelin/contracts": "5.0.2"})
    url = resolve_specifier("@openzeppelin/contracts/access/Ownable.sol", None, ctx)
    assert url == "https://unpkg.com/@openzeppelin/contracts@5.0.2/access/Ownable.sol"


def test_bare_unscoped_package_uses_package_versions():
    ctx = make_ctx(package_versions={"solady": "0.0.200"})
    url = resolve_specifier("solady/src/utils/LibString.sol", None, ctx)
    assert url == "https://unpkg.com/solady@0.0.200/src/utils/LibString.sol"


def test_bare_package_without_version_names_the_package(ctx):
    with pytest.raises(MissingPackageVersion) as ei:
        resolve_specifier("@openzeppelin/contracts/access/Ownable.sol", None, ctx)
    assert ei.value.package == "@openzeppelin/contracts"
    assert "@openzeppelin/contracts" in str(ei.value)


def test_relative_import_resolves_against_base(ctx):
    base = "https://unpkg.com/@openzeppelin/contracts@5.0.2/token/ERC20/ERC20.sol"
    assert resolve_specifier("./IERC20.sol", base, ctx) == (
        "https://unpkg.com/@openzeppelin/contracts@5.0.2/token/ERC20/IERC20.sol"
    )
    assert resolve_specifier("../../utils/Context.sol", base, ctx) == (
        "https://unpkg.com/@openzeppelin/contracts@5.0.2/utils/Context.sol"
    )


def test_relative_import_without_base_fails(ctx):
    with pytest.raises(NoBaseContext) as ei:
        resolve_specifier("./A.sol", None, ctx, referrer="entry.sol")
    assert ei.value.specifier == "./A.sol"


def test_relative_import_cannot_escape_to_another_host(ctx):
    # stays on the base's host; "../" never changes the authority
    url = resolve_specifier("../../../../x.sol", "https://host/a/b.sol", ctx)
    assert url == "https://host/x.sol"


@pytest.mark.parametrize("spec", ["A.sol", "/abs/A.sol", "file:///etc/passwd", "ftp://host/A.sol"])
def test_unsupported_specifiers(ctx, spec):
    with pytest.raises(UnsupportedSpecifier):
        resolve_specifier(spec, "https://host/base.sol", ctx)


def test_canonical_url_keeps_query():
    assert canonical_url("https://Host/a/./b.sol?x=1") == "https://host/a/b.sol?x=1"


def test_default_port_is_the_same_host(ctx):
    url = resolve_specifier("https://unpkg.com:443/pkg@1.0.0/A.sol", None, ctx)
    assert url == "https://unpkg.com/pkg@1.0.0/A.sol"
    assert canonical_url("http://Host:80/a.sol") == "http://host/a.sol"


def test_non_default_port_is_kept_in_the_key():
    ctx = make_ctx(allowed_hosts=frozenset({"host:8443"}))
    assert resolve_specifier("https://host:8443/A.sol", None, ctx) == "https://host:8443/A.sol"
    # 443 is only the default for https
    assert canonical_url("http://host:443/A.sol") == "http://host:443/A.sol"
