import unittest
from unittest.mock import MagicMock, patch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError
from seldon_ingress.seldon.config import IngressDefaults
from seldon_ingress.utils.reconciler import reconcile, reconcile_all
from fakes import FakeNetworkingApi, make_sdep

ENABLED = IngressDefaults(enabled=True)


class TestReconcile(unittest.TestCase):
    def setUp(self):
        self.api = FakeNetworkingApi()
        self.crd_api = MagicMock()
        self.logger = MagicMock()

    def test_success_patches_status(self):
        self.assertTrue(reconcile(make_sdep(), self.api, self.crd_api, ENABLED, self.logger))
        self.assertIsNotNone(self.api.get("ns1", "dep1"))
        kwargs = self.crd_api.patch_namespaced_custom_object_status.call_args.kwargs
        self.assertEqual(kwargs["name"], "dep1")
        self.assertEqual(kwargs["namespace"], "ns1")
        self.assertEqual(kwargs["body"], {"status": {"ingress": {"ready": True, "message": ""}}})
        self.logger.set_context.assert_called_with(sdep="dep1", namespace="ns1", ingress="", trace="")

    def test_failure_reports_error(self):
        self.api.create_namespaced_ingress.side_effect = ApiException(status=500, reason="boom")
        self.assertFalse(reconcile(make_sdep(), self.api, self.crd_api, ENABLED, self.logger))
        body = self.crd_api.patch_namespaced_custom_object_status.call_args.kwargs["body"]
        self.assertFalse(body["status"]["ingress"]["ready"])
        self.assertIn("dep1", body["status"]["ingress"]["message"])
        self.logger.error.assert_called()

    def test_disabled_skips_status(self):
        self.assertTrue(reconcile(make_sdep(), self.api, self.crd_api, IngressDefaults(), self.logger))
        self.crd_api.patch_namespaced_custom_object_status.assert_not_called()
        self.assertEqual(self.api.store, {})

    def test_status_patch_failure_does_not_mask_result(self):
        self.crd_api.patch_namespaced_custom_object_status.side_effect = ApiException(status=404, reason="Not Found")
        self.assertTrue(reconcile(make_sdep(), self.api, self.crd_api, ENABLED, self.logger))

    def test_unexpected_error_reports_not_ready(self):
        with patch("seldon_ingress.utils.reconciler.reconcile_ingress", side_effect=RuntimeError("kaput")):
            self.assertFalse(reconcile(make_sdep(), self.api, self.crd_api, ENABLED, self.logger))
        body = self.crd_api.patch_namespaced_custom_object_status.call_args.kwargs["body"]
        self.assertEqual(body["status"]["ingress"], {"ready": False, "message": "RuntimeError: kaput"})
        self.logger.error.assert_called_once()

    def test_failure_logged_once(self):
        self.api.create_namespaced_ingress.side_effect = ApiException(status=500, reason="boom")
        reconcile(make_sdep(), self.api, self.crd_api, ENABLED, self.logger)
        self.logger.error.assert_called_once()

    def test_malformed_object(self):
        obj = make_sdep()
        del obj["metadata"]["namespace"]
        self.assertFalse(reconcile(obj, self.api, self.crd_api, ENABLED, self.logger))
        self.assertEqual(self.api.store, {})


class TestReconcileAll(unittest.TestCase):
    def setUp(self):
        self.api = FakeNetworkingApi()
        self.crd_api = MagicMock()
        self.crd_api.list_cluster_custom_object.return_value = {
            "items": [make_sdep(name="a"), make_sdep(name="b")]
        }
        self.logger = MagicMock()

    def test_pass_over_all(self):
        last = {}
        self.assertTrue(reconcile_all(self.api, self.crd_api, ENABLED, self.logger, last, now=100))
        self.assertIsNotNone(self.api.get("ns1", "a"))
        self.assertIsNotNone(self.api.get("ns1", "b"))
        self.assertEqual(last, {"ns1/a": 100, "ns1/b": 100})

    def test_interval_respected(self):
        last = {"ns1/a": 90, "ns1/b": 50}
        reconcile_all(self.api, self.crd_api, ENABLED, self.logger, last, interval=30, now=100)
        self.assertIsNone(self.api.get("ns1", "a"))
        self.assertIsNotNone(self.api.get("ns1", "b"))

    def test_forgets_deleted(self):
        last = {"ns1/gone": 10}
        reconcile_all(self.api, self.crd_api, ENABLED, self.logger, last, now=100)
        self.assertNotIn("ns1/gone", last)

    def test_failed_deployment_retried_next_pass(self):
        self.api.create_namespaced_ingress.side_effect = ApiException(status=500, reason="boom")
        last = {}
        self.assertFalse(reconcile_all(self.api, self.crd_api, ENABLED, self.logger, last, now=100))
        self.assertEqual(last, {})

    def test_network_error_does_not_stop_pass(self):
        real_read = self.api.read_namespaced_ingress.side_effect

        def read(name, namespace):
            if name == "a":
                raise MaxRetryError(None, "/apis/networking.k8s.io/v1", reason="connection refused")
            return real_read(name, namespace)

        self.api.read_namespaced_ingress.side_effect = read
        last = {}

        self.assertFalse(reconcile_all(self.api, self.crd_api, ENABLED, self.logger, last, now=100))

        self.assertEqual(last, {"ns1/b": 100})
        self.assertIsNotNone(self.api.get("ns1", "b"))
        patched = {
            c.kwargs["name"]: c.kwargs["body"]["status"]["ingress"]
            for c in self.crd_api.patch_namespaced_custom_object_status.call_args_list
        }
        self.assertFalse(patched["a"]["ready"])
        self.assertIn("connection refused", patched["a"]["message"])
        self.assertTrue(patched["b"]["ready"])

    def test_watch_namespace(self):
        self.crd_api.list_namespaced_custom_object.return_value = {"items": []}
        reconcile_all(self.api, self.crd_api, ENABLED, self.logger, {}, namespace="models", now=100)
        self.crd_api.list_namespaced_custom_object.assert_called_once()
        self.assertEqual(self.crd_api.list_namespaced_custom_object.call_args.kwargs["namespace"], "models")
        self.crd_api.list_cluster_custom_object.assert_not_called()


if __name__ == '__main__':
    unittest.main()
