import contextlib
import io
import math
import unittest

from sockops import protocol as proto
from sockops.operations import (
    HYPOTENUSE,
    SHUTDOWN,
    Operation,
    OperationError,
    OperationRegistry,
    default_registry,
    hypotenuse_client,
    hypotenuse_server,
    parse_number,
)

from socket_helpers import RecordingConnection


def answers(*values):
    it = iter(values)
    return lambda prompt="": next(it)


class RegistryTest(unittest.TestCase):
    def test_default_registry(self):
        registry = default_registry()
        self.assertEqual(len(registry), 2)
        self.assertIs(registry.get(0), SHUTDOWN)
        self.assertIs(registry.get(1), HYPOTENUSE)
        self.assertNotIn(7, registry)

    def test_get_unknown_raises(self):
        with self.assertRaises(OperationError):
            OperationRegistry().get(3)

    def test_register_and_unregister(self):
        registry = OperationRegistry()
        echo = Operation("Echo.", lambda req, conn: conn.send(req), lambda conn, ask=input: None)
        registry.register(5, echo)
        self.assertIn(5, registry)
        registry.unregister(echo)
        self.assertNotIn(5, registry)
        registry.register(5, echo)
        registry.unregister(5)
        self.assertEqual(len(registry), 0)
        registry.unregister(5)

    def test_list_operations_in_code_order(self):
        registry = OperationRegistry()
        registry.register(1, HYPOTENUSE)
        registry.register(0, SHUTDOWN)
        self.assertEqual(
            registry.list_operations(),
            f"0: {SHUTDOWN.description}\n1: {HYPOTENUSE.description}\n",
        )


class HypotenuseServerTest(unittest.TestCase):
    def handle(self, request):
        conn = RecordingConnection()
        hypotenuse_server(request, conn)
        self.assertEqual(len(conn.sent), 1)
        return conn.sent[0]

    def test_result(self):
        response = self.handle({"operation": 1, "a": 5, "b": 10.5})
        self.assertEqual(response["operation"], 1)
        self.assertEqual(response["a"], 5)
        self.assertEqual(response["b"], 10.5)
        self.assertAlmostEqual(response["result"], 11.629703349613008, delta=1e-9)

    def test_missing_argument(self):
        self.assertEqual(self.handle({"operation": 1, "a": 5}), proto.missing_required_argument_error())

    def test_non_numeric_argument(self):
        self.assertEqual(self.handle({"operation": 1, "a": "5", "b": 1}), proto.illegal_argument_type_error())
        self.assertEqual(self.handle({"operation": 1, "a": 5, "b": [1]}), proto.illegal_argument_type_error())
        self.assertEqual(self.handle({"operation": 1, "a": True, "b": 1}), proto.illegal_argument_type_error())

    def test_large_operands(self):
        response = self.handle({"operation": 1, "a": 1e200, "b": 1})
        self.assertAlmostEqual(response["result"] / 1e200, 1.0, delta=1e-12)

    def test_result_out_of_range(self):
        self.assertEqual(self.handle({"operation": 1, "a": 1e308, "b": 1e308}), proto.illegal_argument_type_error())

    def test_integer_beyond_double_range(self):
        self.assertEqual(self.handle({"operation": 1, "a": 10 ** 400, "b": 1}), proto.illegal_argument_type_error())

    def test_non_finite_operand(self):
        self.assertEqual(self.handle({"operation": 1, "a": float("inf"), "b": 1}), proto.illegal_argument_type_error())
        self.assertEqual(self.handle({"operation": 1, "a": 1, "b": float("nan")}), proto.illegal_argument_type_error())


class HypotenuseClientTest(unittest.TestCase):
    def run_client(self, reply, *typed):
        conn = RecordingConnection([reply])
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            hypotenuse_client(conn, answers(*typed))
        return conn, out.getvalue()

    def test_sends_request_and_prints_result(self):
        conn, out = self.run_client({"operation": 1, "a": 3, "b": 4, "result": 5.0}, "3", "4")
        self.assertEqual(conn.sent, [{"operation": 1, "a": 3, "b": 4}])
        self.assertIn("The hypotenuse is: 5.0", out)

    def test_reprompts_on_invalid_number(self):
        conn, out = self.run_client({"operation": 1, "result": 1.0}, "abc", "1.5", "nan", "2")
        self.assertEqual(conn.sent, [{"operation": 1, "a": 1.5, "b": 2}])
        self.assertEqual(out.count("Please enter a valid number."), 2)

    def test_prints_server_error(self):
        _, out = self.run_client(proto.illegal_argument_type_error(), "1", "2")
        self.assertIn("Error: Illegal Argument Type", out)

    def test_malformed_response(self):
        _, out = self.run_client({"operation": 1}, "1", "2")
        self.assertIn("Malformed response", out)

    def test_connection_closed(self):
        _, out = self.run_client({"operation": 0}, "1", "2")
        self.assertIn("closed the connection", out)


class ShutdownTest(unittest.TestCase):
    def test_server_side_closes(self):
        conn = RecordingConnection()
        SHUTDOWN.handle_server({"operation": 0}, conn)
        self.assertTrue(conn.closed)
        self.assertEqual(conn.sent, [])

    def test_client_side_closes(self):
        conn = RecordingConnection()
        SHUTDOWN.handle_client(conn)
        self.assertTrue(conn.closed)


class ParseNumberTest(unittest.TestCase):
    def test_values(self):
        self.assertEqual(parse_number(" 7 "), 7)
        self.assertIsInstance(parse_number("7"), int)
        self.assertEqual(parse_number("2.5"), 2.5)
        self.assertEqual(parse_number("1e3"), 1000.0)
        self.assertIsNone(parse_number("seven"))
        self.assertIsNone(parse_number("inf"))
        self.assertTrue(math.isclose(parse_number("-0.1"), -0.1))


if __name__ == "__main__":
    unittest.main()
