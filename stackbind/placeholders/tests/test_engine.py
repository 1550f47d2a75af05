import pytest

from stackbind.core.exceptions import MalformedPlaceholderError, UnresolvedPlaceholderError
from stackbind.placeholders.engine import (
    ExtensionRegistry,
    apply_placeholders,
    find_placeholders,
    resolve,
)
from stackbind.placeholders.extensions import dependency_extension, resource_extension


def _upper(path, default, data):
    return path.upper()


def _not_applicable(path, default, data):
    return None


@pytest.fixture
def registry():
    return ExtensionRegistry({"up": _upper, "skip": _not_applicable})


class TestResolve:
    def test_dispatches_to_namespace(self, registry):
        assert resolve("a-${up:hello}-b", {}, registry) == "a-HELLO-b"

    def test_unregistered_namespace_returns_default(self, registry):
        assert resolve("${nope:x.y:fallback}", {}, registry) == "fallback"

    def test_default_may_contain_colons(self, registry):
        assert resolve("${nope:url:http://localhost:8080}", {}, registry) == (
            "http://localhost:8080"
        )

    def test_empty_default_is_a_default(self, registry):
        assert resolve("[${nope:x:}]", {}, registry) == "[]"

    def test_not_applicable_uses_default(self, registry):
        assert resolve("${skip:x:d}", {}, registry) == "d"

    def test_unresolved_names_exact_token(self, registry):
        with pytest.raises(UnresolvedPlaceholderError) as exc:
            resolve("value ${skip:some.path} end", {}, registry)
        assert exc.value.token == "${skip:some.path}"

    def test_non_strict_leaves_token_for_another_pass(self, registry):
        first = resolve("${up:a} ${other:b}", {}, registry, strict=False)
        assert first == "A ${other:b}"

        second = resolve(first, {}, ExtensionRegistry({"other": _upper}))
        assert second == "A B"

    def test_non_strict_keeps_default_of_unregistered_namespace(self, registry):
        first = resolve("${later:x:fallback}", {}, registry, strict=False)
        assert first == "${later:x:fallback}"

        assert resolve(first, {}, ExtensionRegistry({"later": _upper})) == "X"
        assert resolve(first, {}, registry) == "fallback"

    def test_non_strict_uses_default_when_extension_does_not_apply(self, registry):
        assert resolve("${skip:x:d}", {}, registry, strict=False) == "d"

    def test_substituted_text_is_not_rescanned(self):
        registry = ExtensionRegistry({"raw": lambda p, d, data: "${raw:again}"})
        assert resolve("${raw:x}", {}, registry) == "${raw:again}"

    def test_resolving_resolved_string_is_noop(self, registry):
        once = resolve("${up:abc}", {}, registry)
        assert resolve(once, {}, registry) == once

    def test_malformed_tokens_are_left_alone(self, registry):
        assert resolve("${up}", {}, registry) == "${up}"
        assert resolve("$up:x}", {}, registry) == "$up:x}"

    def test_data_bag_is_passed(self):
        registry = ExtensionRegistry({"bag": lambda p, d, data: data[p]})
        assert resolve("${bag:k}", {"k": "v"}, registry) == "v"


class TestBoundsChecks:
    @pytest.mark.parametrize("token", ["${resource:logs}", "${resource:}", "${resource:a.b.c}"])
    def test_malformed_resource_path(self, token):
        registry = ExtensionRegistry({"resource": resource_extension(lambda name: {})})
        with pytest.raises(MalformedPlaceholderError):
            resolve(token, {}, registry)

    @pytest.mark.parametrize("token", ["${dependency:dep}", "${dependency:dep.res}"])
    def test_malformed_dependency_path(self, token):
        registry = ExtensionRegistry({"dependency": dependency_extension(lambda d, r: {})})
        with pytest.raises(MalformedPlaceholderError) as exc:
            resolve(token, {}, registry)
        assert exc.value.token == token

    def test_resource_and_dependency_lookup(self):
        registry = ExtensionRegistry(
            {
                "resource": resource_extension(
                    lambda name: {"bucket": "logs-bucket"} if name == "logs" else None
                ),
                "dependency": dependency_extension(lambda dep, res: {"url": f"{dep}/{res}"}),
            }
        )
        assert resolve("${resource:logs.bucket}", {}, registry) == "logs-bucket"
        assert resolve("${dependency:api.db.url}", {}, registry) == "api/db"
        with pytest.raises(UnresolvedPlaceholderError):
            resolve("${resource:other.bucket}", {}, registry)


def test_find_placeholders():
    found = find_placeholders("${a:b} and ${c:d.e:f:g}")
    assert [p.token for p in found] == ["${a:b}", "${c:d.e:f:g}"]
    assert found[1].namespace == "c"
    assert found[1].path == "d.e"
    assert found[1].default == "f:g"


def test_apply_placeholders_walks_containers(registry):
    obj = {"a": ["${up:x}", ("${up:y}", 3)], "b": {"c": "${up:z}"}, "d": None}

    resolved = apply_placeholders(obj, {}, registry)

    assert resolved == {"a": ["X", ("Y", 3)], "b": {"c": "Z"}, "d": None}
    assert obj["a"][0] == "${up:x}"
