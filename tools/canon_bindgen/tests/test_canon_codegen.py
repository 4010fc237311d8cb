from __future__ import annotations

import inspect
import sys
import types
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent))
from bindgen_fakes import STORE, FakeInstance, RoundTrip, build, make_idl  # noqa: E402

from canon_bindgen_core import (  # noqa: E402
    LayoutError,
    UnsupportedTypeError,
    generate_bindings,
    resolve_from_payload,
)

POINT = {"name": "point", "kind": {"record": {"fields": [{"name": "x", "type": "s32"}, {"name": "y", "type": "float32"}]}}}


def string_params(count: int) -> list[dict]:
    return [{"name": f"s{index}", "type": "string"} for index in range(count)]


class ScalarExportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.source, self.module = build(
            make_idl(
                exports={
                    "functions": [
                        {"name": "add", "params": [{"name": "x", "type": "s32"}, {"name": "y", "type": "s32"}], "results": "s32"}
                    ]
                }
            )
        )
        self.instance = FakeInstance()

        @self.instance.export("add")
        def add(x, y):
            return x + y

        self.world = self.module.Demo(STORE)
        self.world.bind(self.instance.exports)

    def test_scalar_export_is_bound_directly(self) -> None:
        self.assertIn('functools.partial(exports["add"], _store)', self.source)
        self.assertEqual(self.world.add(2, 3), 5)
        self.assertIs(self.world.add.func, self.instance.exports["add"])
        self.assertEqual(self.instance.calls, [("add", (2, 3))])

    def test_exports_table_is_keyed_by_group(self) -> None:
        self.assertIs(self.world.exports["$root"]["add"], self.world.add)

    def test_header_and_defaults(self) -> None:
        self.assertTrue(
            self.source.startswith("# Auto-generated by canon-bindgen 0.1.0 from world 'demo'. Do not edit manually.\n")
        )
        self.assertEqual(self.module.WASM_PATH, "demo.wasm")
        self.assertEqual(self.module.__all__, ["Demo", "load_module"])

    def test_generation_is_deterministic(self) -> None:
        payload = make_idl(
            types_=[POINT],
            exports={"functions": [{"name": "norm", "params": [{"name": "p", "type": 0}], "results": "float32"}]},
        )
        first = generate_bindings(resolve_from_payload(payload))
        second = generate_bindings(resolve_from_payload(payload))
        self.assertEqual(first, second)


class StringExportTests(unittest.TestCase):
    def test_concat_lowers_both_strings_and_runs_post_return(self) -> None:
        _, module = build(
            make_idl(
                exports={
                    "functions": [
                        {
                            "name": "concat",
                            "params": [{"name": "a", "type": "string"}, {"name": "b", "type": "string"}],
                            "results": "string",
                        }
                    ]
                }
            )
        )
        instance = FakeInstance()
        post_calls: list[tuple] = []
        retptrs: list[int] = []

        @instance.export("concat")
        def concat(a_ptr, a_len, b_ptr, b_len):
            joined = instance.read_text(a_ptr, a_len) + instance.read_text(b_ptr, b_len)
            ptr, length = instance.write_text(joined)
            retptr = instance.alloc(8, 4)
            instance.write_u32s(retptr, ptr, length)
            retptrs.append(retptr)
            return retptr

        instance.exports["cabi_post_concat"] = lambda store, *args: post_calls.append(args)
        world = module.Demo(STORE)
        world.bind(instance.exports)

        self.assertEqual(world.concat("foo", "bar"), "foobar")
        name, args = instance.calls[0]
        self.assertEqual(name, "concat")
        self.assertEqual(len(args), 4)
        self.assertEqual((args[1], args[3]), (3, 3))
        self.assertEqual(post_calls, [(retptrs[0],)])

    def test_missing_post_return_is_skipped(self) -> None:
        _, module = build(
            make_idl(exports={"functions": [{"name": "size", "params": [{"name": "text", "type": "string"}], "results": "u32"}]})
        )
        instance = FakeInstance()

        @instance.export("size")
        def size(ptr, length):
            return length

        world = module.Demo(STORE)
        world.bind(instance.exports)
        self.assertEqual(world.size("héllo"), 6)
        self.assertEqual(world.size(""), 0)

    def test_post_return_runs_when_result_fails_to_decode(self) -> None:
        _, module = build(make_idl(exports={"functions": [{"name": "name", "results": "string"}]}))
        instance = FakeInstance()
        post_calls: list[tuple] = []

        @instance.export("name")
        def name():
            ptr = instance.alloc(2, 1)
            instance.memory.write(STORE, b"\xff\xfe", ptr)
            retptr = instance.alloc(8, 4)
            instance.write_u32s(retptr, ptr, 2)
            return retptr

        instance.exports["cabi_post_name"] = lambda store, *args: post_calls.append(args)
        world = module.Demo(STORE)
        world.bind(instance.exports)
        with self.assertRaises(UnicodeDecodeError):
            world.name()
        self.assertEqual(len(post_calls), 1)


class RoundTripTests(unittest.TestCase):
    def assert_roundtrip(self, types_: list, ref, value, *, indirect_result: bool) -> RoundTrip:
        trip = RoundTrip(types_, ref, indirect_result=indirect_result)
        self.assertEqual(trip.through_params(value), value)
        self.assertEqual(trip.through_result(value), value)
        return trip

    def test_record(self) -> None:
        trip = RoundTrip([POINT], 0, indirect_result=True)
        point = trip.module.Point(x=-7, y=1.5)
        self.assertEqual(trip.through_params(point), point)
        self.assertEqual(trip.through_result(point), point)
        self.assertEqual(len(trip.post_calls), 1)

    def test_record_with_mixed_widths(self) -> None:
        nums = {
            "name": "nums",
            "kind": {
                "record": {
                    "fields": [
                        {"name": "a", "type": "s8"},
                        {"name": "b", "type": "u64"},
                        {"name": "c", "type": "s16"},
                        {"name": "d", "type": "u8"},
                    ]
                }
            },
        }
        trip = RoundTrip([nums], 0, indirect_result=True)
        value = trip.module.Nums(a=-5, b=2**64 - 1, c=-300, d=200)
        self.assertEqual(trip.through_params(value), value)
        self.assertEqual(trip.through_result(value), value)

    def test_variant_cases(self) -> None:
        shape = {
            "name": "shape",
            "kind": {
                "variant": {
                    "cases": [{"name": "circle", "type": "float32"}, {"name": "rect", "type": 0}, {"name": "none"}]
                }
            },
        }
        trip = RoundTrip([POINT, shape], 1, indirect_result=True)
        module = trip.module
        for value in (module.ShapeCircle(2.5), module.ShapeRect(module.Point(x=3, y=-0.5)), module.ShapeNone()):
            with self.subTest(value=value):
                self.assertEqual(trip.through_params(value), value)
                self.assertEqual(trip.through_result(value), value)

    def test_keyword_case_names_are_not_escaped_inside_class_names(self) -> None:
        variant = {"name": "v", "kind": {"variant": {"cases": [{"name": "true"}, {"name": "none"}, {"name": "false"}]}}}
        trip = RoundTrip([variant], 0, indirect_result=False)
        module = trip.module
        self.assertFalse(hasattr(module, "VNone_"))
        for value in (module.VTrue(), module.VNone(), module.VFalse()):
            with self.subTest(value=value):
                self.assertEqual(trip.through_params(value), value)
                self.assertEqual(trip.through_result(value), value)

    def test_variant_rejects_foreign_values(self) -> None:
        shape = {"name": "shape", "kind": {"variant": {"cases": [{"name": "circle", "type": "float32"}]}}}
        trip = RoundTrip([shape], 0, indirect_result=True)
        with self.assertRaises(TypeError):
            trip.world.put(42)

    def test_variant_with_widened_payload_slots(self) -> None:
        number = {
            "name": "number",
            "kind": {
                "variant": {
                    "cases": [
                        {"name": "small", "type": "u32"},
                        {"name": "big", "type": "float64"},
                        {"name": "tiny", "type": "float32"},
                    ]
                }
            },
        }
        trip = RoundTrip([number], 0, indirect_result=True)
        module = trip.module
        for value in (module.NumberSmall(7), module.NumberBig(2.5), module.NumberTiny(0.75)):
            with self.subTest(value=value):
                self.assertEqual(trip.through_params(value), value)
                self.assertEqual(trip.through_result(value), value)

    def test_enum(self) -> None:
        color = {"name": "color", "kind": {"enum": {"cases": ["red", "green", "blue"]}}}
        trip = RoundTrip([color], 0, indirect_result=False)
        blue = trip.module.Color.BLUE
        self.assertEqual(trip.through_params(blue), blue)
        self.assertEqual(trip.through_result(blue), blue)
        self.assertEqual(trip.post_calls, [(2,)])
        with self.assertRaises(ValueError):
            trip.imports["$root"]["sink"](7)

    def test_flags(self) -> None:
        perms = {"name": "perms", "kind": {"flags": {"flags": ["read", "write", "exec"]}}}
        trip = RoundTrip([perms], 0, indirect_result=False)
        Perms = trip.module.Perms
        for value in (Perms(0), Perms.READ | Perms.EXEC, Perms.READ | Perms.WRITE | Perms.EXEC):
            with self.subTest(value=value):
                self.assertEqual(trip.through_params(value), value)
                self.assertEqual(trip.through_result(value), value)

    def test_flags_spanning_two_words(self) -> None:
        wide = {"name": "wide", "kind": {"flags": {"flags": [f"f{index}" for index in range(40)]}}}
        trip = RoundTrip([wide], 0, indirect_result=True)
        Wide = trip.module.Wide
        value = Wide.F0 | Wide.F33 | Wide.F39
        self.assertEqual(trip.through_params(value), value)
        self.assertEqual(trip.through_result(value), value)

    def test_flags_without_labels(self) -> None:
        trip = RoundTrip([{"name": "none-set", "kind": {"flags": {"flags": []}}}], 0, indirect_result=False)
        NoneSet = trip.module.NoneSet
        self.assertEqual(trip.through_params(NoneSet(0)), NoneSet.NONE)
        self.assertEqual(trip.through_result(NoneSet.NONE), NoneSet(0))

    def test_unknown_flag_bits_are_dropped(self) -> None:
        perms = {"name": "perms", "kind": {"flags": {"flags": ["read", "write"]}}}
        trip = RoundTrip([perms], 0, indirect_result=False)
        trip.imports["$root"]["sink"](0xFF)
        self.assertEqual(trip.received[-1], trip.module.Perms.READ | trip.module.Perms.WRITE)

    def test_option_of_string(self) -> None:
        for value in (None, "hi", ""):
            with self.subTest(value=value):
                self.assert_roundtrip([{"kind": {"option": "string"}}], 0, value, indirect_result=True)

    def test_result(self) -> None:
        trip = RoundTrip([{"kind": {"result": {"ok": "u32", "err": "string"}}}], 0, indirect_result=True)
        module = trip.module
        for value in (module.Ok(5), module.Err("bad")):
            with self.subTest(value=value):
                self.assertEqual(trip.through_params(value), value)
                self.assertEqual(trip.through_result(value), value)
        with self.assertRaises(TypeError):
            trip.world.put(5)

    def test_result_without_payloads(self) -> None:
        trip = RoundTrip([{"kind": {"result": {}}}], 0, indirect_result=False)
        module = trip.module
        for value in (module.Ok(), module.Err()):
            with self.subTest(value=value):
                self.assertEqual(trip.through_params(value), value)
                self.assertEqual(trip.through_result(value), value)

    def test_tuple(self) -> None:
        self.assert_roundtrip(
            [{"kind": {"tuple": ["u8", "char", "bool"]}}], 0, (255, "é", True), indirect_result=True
        )

    def test_nested_lists(self) -> None:
        self.assert_roundtrip(
            [{"kind": {"list": "string"}}, {"kind": {"list": 0}}],
            1,
            [["a", "bc"], [], ["ü"]],
            indirect_result=True,
        )

    def test_bulk_list(self) -> None:
        self.assert_roundtrip([{"kind": {"list": "u16"}}], 0, [1, 65535, 0], indirect_result=True)

    def test_list_of_records(self) -> None:
        trip = RoundTrip([POINT, {"kind": {"list": 0}}], 1, indirect_result=True)
        Point = trip.module.Point
        value = [Point(x=1, y=2.0), Point(x=-3, y=0.5)]
        self.assertEqual(trip.through_params(value), value)
        self.assertEqual(trip.through_result(value), value)

    def test_alias_is_transparent(self) -> None:
        self.assert_roundtrip([{"name": "label", "kind": {"alias": "string"}}], 0, "tag", indirect_result=True)


class WorldWiringTests(unittest.TestCase):
    def test_named_results_come_back_as_tuple(self) -> None:
        results = [{"name": "num", "type": "u32"}, {"name": "word", "type": "string"}]
        _, module = build(
            make_idl(
                imports={"functions": [{"name": "make-pair", "results": results}]},
                exports={"functions": [{"name": "pair", "results": results}]},
            )
        )
        instance = FakeInstance()
        world = module.Demo(STORE)
        imports = world.build_imports({"$root": types.SimpleNamespace(make_pair=lambda: (7, "seven"))})

        @instance.export("pair")
        def pair():
            retptr = instance.alloc(12, 4)
            imports["$root"]["make-pair"](retptr)
            return retptr

        world.bind(instance.exports)
        self.assertEqual(world.pair(), (7, "seven"))

    def test_many_params_spill_to_memory(self) -> None:
        params = string_params(9)
        _, module = build(
            make_idl(
                imports={"functions": [{"name": "take-many", "params": params}]},
                exports={"functions": [{"name": "many", "params": params}]},
            )
        )
        instance = FakeInstance()
        received: list[tuple] = []
        world = module.Demo(STORE)
        imports = world.build_imports({"$root": types.SimpleNamespace(take_many=lambda *values: received.append(values))})

        @instance.export("many")
        def many(*args):
            self.assertEqual(len(args), 1)
            imports["$root"]["take-many"](*args)

        world.bind(instance.exports)
        words = tuple("abcdefghi")
        world.many(*words)
        self.assertEqual(received, [words])

    def test_import_adapter_writes_result_area(self) -> None:
        _, module = build(
            make_idl(
                imports={"functions": [{"name": "greet", "params": [{"name": "name", "type": "string"}], "results": "string"}]}
            )
        )
        instance = FakeInstance()
        world = module.Demo(STORE)
        imports = world.build_imports({"$root": types.SimpleNamespace(greet=lambda name: f"hello {name}")})
        world.bind(instance.exports)

        ptr, length = instance.write_text("bob")
        retptr = instance.alloc(8, 4)
        self.assertIsNone(imports["$root"]["greet"](ptr, length, retptr))
        out_ptr, out_len = instance.read_u32s(retptr, 2)
        self.assertEqual(instance.read_text(out_ptr, out_len), "hello bob")

    def test_scalar_import_passes_host_function_through(self) -> None:
        _, module = build(
            make_idl(imports={"functions": [{"name": "tick", "params": [{"name": "n", "type": "u32"}], "results": "u32"}]})
        )
        host = types.SimpleNamespace(tick=lambda n: n + 1)
        imports = module.Demo(STORE).build_imports({"$root": host})
        self.assertIs(imports["$root"]["tick"], host.tick)

    def test_interface_imports_use_interface_module(self) -> None:
        _, module = build(
            make_idl(
                imports={
                    "interfaces": {
                        "log": {"functions": [{"name": "emit", "params": [{"name": "msg", "type": "string"}]}]}
                    }
                }
            )
        )
        instance = FakeInstance()
        messages: list[str] = []
        world = module.Demo(STORE)
        imports = world.build_imports({"log": types.SimpleNamespace(emit=messages.append)})
        world.bind(instance.exports)
        imports["log"]["emit"](*instance.write_text("started"))
        self.assertEqual(messages, ["started"])

    def test_interface_exports_get_namespace(self) -> None:
        source, module = build(
            make_idl(
                exports={
                    "interfaces": {
                        "geometry": {
                            "functions": [
                                {
                                    "name": "area",
                                    "params": [{"name": "w", "type": "u32"}, {"name": "h", "type": "u32"}],
                                    "results": "u32",
                                },
                                {"name": "shout", "params": [{"name": "text", "type": "string"}], "results": "string"},
                            ]
                        }
                    }
                }
            )
        )
        instance = FakeInstance()

        @instance.export("geometry#area")
        def area(w, h):
            return w * h

        @instance.export("geometry#shout")
        def shout(ptr, length):
            out_ptr, out_len = instance.write_text(instance.read_text(ptr, length).upper())
            retptr = instance.alloc(8, 4)
            instance.write_u32s(retptr, out_ptr, out_len)
            return retptr

        world = module.Demo(STORE)
        world.bind(instance.exports)
        self.assertIsInstance(world.geometry, types.SimpleNamespace)
        self.assertEqual(world.geometry.area(2, 3), 6)
        self.assertEqual(world.geometry.shout("hey"), "HEY")
        self.assertIs(world.exports["geometry"]["area"], world.geometry.area)
        self.assertIn('exports["geometry#shout"]', source)

    def test_reserved_parameter_names_are_escaped(self) -> None:
        _, module = build(
            make_idl(
                exports={
                    "functions": [
                        {"name": "configure", "params": [{"name": "class", "type": "u32"}, {"name": "len", "type": "string"}]}
                    ]
                }
            )
        )
        instance = FakeInstance()

        @instance.export("configure")
        def configure(*flat):
            return None

        world = module.Demo(STORE)
        world.bind(instance.exports)
        self.assertEqual(list(inspect.signature(world.configure).parameters), ["class_", "len_"])
        world.configure(class_=1, len_="x")
        self.assertEqual(instance.calls[0][1][0], 1)

    def test_missing_host_function_raises_lookup_error(self) -> None:
        _, module = build(
            make_idl(imports={"functions": [{"name": "tick", "params": [{"name": "n", "type": "u32"}], "results": "u32"}]})
        )
        with self.assertRaisesRegex(LookupError, r"\$root::tick"):
            module.Demo(STORE).build_imports({"$root": types.SimpleNamespace()})

    def test_function_named_like_world_member_is_suffixed(self) -> None:
        _, module = build(make_idl(exports={"functions": [{"name": "bind", "results": "u32"}]}))
        instance = FakeInstance()

        @instance.export("bind")
        def bind_export():
            return 9

        world = module.Demo(STORE)
        world.bind(instance.exports)
        self.assertEqual(world.bind_(), 9)


class GenerationOptionTests(unittest.TestCase):
    def test_class_name_and_wasm_path(self) -> None:
        source, module = build(make_idl(), class_name="Widget", wasm_path="bin/widget.wasm")
        self.assertTrue(hasattr(module, "Widget"))
        self.assertEqual(module.WASM_PATH, "bin/widget.wasm")
        self.assertIn('"Widget"', source)

    def test_all_lists_generated_types(self) -> None:
        _, module = build(
            make_idl(
                types_=[
                    POINT,
                    {"name": "shape", "kind": {"variant": {"cases": [{"name": "dot"}, {"name": "box", "type": 0}]}}},
                    {"kind": {"result": {"ok": "u8"}}},
                ],
                exports={"functions": [{"name": "check", "params": [{"name": "s", "type": 1}], "results": 2}]},
            )
        )
        self.assertEqual(module.__all__, ["Demo", "load_module", "Err", "Ok", "Point", "Shape", "ShapeBox", "ShapeDot"])
        self.assertEqual(module.Shape.__args__, (module.ShapeDot, module.ShapeBox))

    def test_reserved_type_name_takes_interface_prefix(self) -> None:
        _, module = build(
            make_idl(types_=[{"name": "ok", "interface": "net", "kind": {"record": {"fields": [{"name": "code", "type": "u16"}]}}}])
        )
        self.assertEqual(module.NetOk(code=1).code, 1)

    def test_reserved_type_name_without_interface_is_rejected(self) -> None:
        payload = make_idl(types_=[{"name": "union", "kind": {"enum": {"cases": ["a"]}}}])
        with self.assertRaises(LayoutError):
            generate_bindings(resolve_from_payload(payload))

    def test_colliding_host_names_are_rejected(self) -> None:
        payload = make_idl(exports={"functions": [{"name": "get-name"}, {"name": "get_name"}]})
        with self.assertRaisesRegex(LayoutError, "get_name"):
            generate_bindings(resolve_from_payload(payload))

    def test_colliding_export_interfaces_are_rejected(self) -> None:
        payload = make_idl(
            exports={
                "interfaces": {
                    "foo-bar": {"functions": [{"name": "a"}]},
                    "foo_bar": {"functions": [{"name": "b"}]},
                }
            }
        )
        with self.assertRaisesRegex(LayoutError, "foo_bar"):
            generate_bindings(resolve_from_payload(payload))

    def test_handles_are_unsupported(self) -> None:
        payload = make_idl(
            types_=[{"name": "file", "kind": {"resource": {}}}, {"kind": {"handle": {"resource": 0}}}],
            exports={"functions": [{"name": "open", "params": [{"name": "f", "type": 1}]}]},
        )
        with self.assertRaisesRegex(UnsupportedTypeError, "function 'open'"):
            generate_bindings(resolve_from_payload(payload))

    def test_nested_option_is_unsupported(self) -> None:
        payload = make_idl(
            types_=[{"kind": {"option": "u8"}}, {"kind": {"option": 0}}],
            exports={"functions": [{"name": "maybe", "params": [{"name": "v", "type": 1}]}]},
        )
        with self.assertRaisesRegex(UnsupportedTypeError, "function 'maybe'"):
            generate_bindings(resolve_from_payload(payload))


class InstantiateTests(unittest.TestCase):
    def setUp(self) -> None:
        _, self.module = build(
            make_idl(
                imports={"functions": [{"name": "tick", "params": [{"name": "n", "type": "u32"}], "results": "u32"}]},
                exports={
                    "functions": [
                        {"name": "add", "params": [{"name": "a", "type": "u32"}, {"name": "b", "type": "u32"}], "results": "u32"}
                    ]
                },
            )
        )
        self.instance = FakeInstance()

        @self.instance.export("add")
        def add(a, b):
            return a + b

        instance = self.instance
        self.linkers: list[object] = []
        linkers = self.linkers

        class FakeLinker:
            def __init__(self, engine):
                self.engine = engine
                self.defined: dict[tuple[str, str], object] = {}
                linkers.append(self)

            def define(self, store, module, name, item):
                self.defined[(module, name)] = item

            def instantiate(self, store, module):
                return types.SimpleNamespace(exports=lambda store: instance.exports)

        self.fake_wasmtime = types.SimpleNamespace(
            Linker=FakeLinker,
            Func=lambda store, ty, fn: ("func", ty, fn),
            Module=types.SimpleNamespace(from_file=lambda engine, path: ("module", engine, path)),
        )
        self.host = types.SimpleNamespace(tick=lambda n: n + 1)

    def test_instantiate_links_imports_and_binds_exports(self) -> None:
        core = types.SimpleNamespace(imports=[types.SimpleNamespace(module="$root", name="tick", type="tick-type")])
        with mock.patch.dict(sys.modules, {"wasmtime": self.fake_wasmtime}):
            world = self.module.Demo.instantiate(STORE, core, {"$root": self.host})
        (linker,) = self.linkers
        self.assertEqual(linker.engine, "fake-engine")
        self.assertEqual(linker.defined, {("$root", "tick"): ("func", "tick-type", self.host.tick)})
        self.assertEqual(world.add(4, 5), 9)

    def test_instantiate_reports_missing_host_function(self) -> None:
        core = types.SimpleNamespace(imports=[types.SimpleNamespace(module="$root", name="missing", type=None)])
        with mock.patch.dict(sys.modules, {"wasmtime": self.fake_wasmtime}):
            with self.assertRaisesRegex(LookupError, r"\$root::missing"):
                self.module.Demo.instantiate(STORE, core, {"$root": self.host})

    def test_load_module_defaults_next_to_bindings(self) -> None:
        self.module.__file__ = "/srv/app/bindings.py"
        with mock.patch.dict(sys.modules, {"wasmtime": self.fake_wasmtime}):
            self.assertEqual(self.module.load_module("engine"), ("module", "engine", "/srv/app/demo.wasm"))
            self.assertEqual(self.module.load_module("engine", "other.wasm"), ("module", "engine", "other.wasm"))


if __name__ == "__main__":
    unittest.main()
