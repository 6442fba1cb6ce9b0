#tests\test_engine.py

"""Test the convergence engine end to end with fake adapters."""

import pytest

from conftest import service
from fleet_engine.core.errors import ConflictError, LockTimeoutError, ValidationError
from fleet_engine.core.models import ServiceState
from fleet_engine.engine.engine import ConvergenceEngine
from fleet_engine.reconciler.reconciler import ServiceReconciler
from fleet_engine.routing.certificates import CertificateManager, CertificateStore
from fleet_engine.routing.router import EdgeRouter, site_file_name
from fleet_engine.manifest.schema import FleetManifest, ServiceSpec


@pytest.fixture
def build_engine(settings, fetcher, supervisor, database_admin, runner, controller, authority, host_lock, emitter):
    def _build(max_workers=2):
        def reconciler_factory(manifest):
            return ServiceReconciler(
                manifest=manifest,
                settings=settings,
                fetcher=fetcher,
                supervisor=supervisor,
                database_admin=database_admin,
                runner=runner,
                emitter=emitter,
                sleep=lambda seconds: None,
            )

        certificates = CertificateManager(
            authority,
            CertificateStore(settings.letsencrypt_dir),
            attempts=1,
            emitter=emitter,
            sleep=lambda seconds: None,
        )
        router = EdgeRouter(settings.nginx_sites_dir, settings.acme_webroot, controller, certificates, emitter=emitter)
        return ConvergenceEngine(
            reconciler_factory=reconciler_factory,
            router=router,
            lock=host_lock,
            max_workers=max_workers,
        )
    return _build


class TestProvision:

    def test_all_services_then_routing(self, build_engine, make_manifest, settings):
        manifest = make_manifest(
            service("shop", 8001, frontend_enabled=True, frontend_port=3001),
            service("blog", 8002, database_enabled=True, database_name="blog", run_migrations=True),
        )

        summary = build_engine().provision(manifest)

        assert list(summary.services) == ["shop", "blog"]
        assert all(s.state == ServiceState.RUNNING for s in summary.services.values())
        assert summary.exit_code == 0
        assert len(summary.routing.routes) == 3
        assert (settings.nginx_sites_dir / site_file_name("blog")).is_file()

    def test_failed_service_still_routes_others(self, build_engine, make_manifest, runner, settings):
        manifest = make_manifest(
            service("a", 8001, database_enabled=True, database_name="a_db", run_migrations=True),
            service("b", 8002),
        )
        runner.fail_when(lambda args, cwd: "migrate" in args and cwd == settings.services_root / "a")

        summary = build_engine().provision(manifest)

        assert summary.services["a"].state == ServiceState.FAILED
        assert summary.services["b"].state == ServiceState.RUNNING
        assert summary.failed_services == ["a"]
        assert summary.exit_code == 4
        assert summary.routing is not None

    def test_routing_failure(self, build_engine, make_manifest, controller):
        controller.reject = True

        summary = build_engine().provision(make_manifest(service("shop", 8001)))

        assert summary.services["shop"].state == ServiceState.RUNNING
        assert summary.routing_error
        assert summary.exit_code == 5

    def test_second_run_changes_nothing(self, build_engine, make_manifest, supervisor, controller):
        manifest = make_manifest(service("shop", 8001))
        engine = build_engine()
        engine.provision(manifest)
        supervisor.actions.clear()
        reloads = controller.reloads

        summary = engine.provision(manifest)

        assert summary.services["shop"].restarted_units == []
        assert supervisor.actions == []
        assert controller.reloads == reloads
        assert not summary.routing.reloaded

    def test_conflict_aborts_before_mutation(self, build_engine, fetcher):
        # Bypasses the validator to reach the allocator directly
        manifest = FleetManifest(
            domain_suffix="example.test",
            services=(
                ServiceSpec(name="a", backend_port=8001),
                ServiceSpec(name="b", backend_port=8001),
            ),
        )

        with pytest.raises(ConflictError):
            build_engine().provision(manifest)

        assert fetcher.calls == []

    def test_lock_timeout(self, build_engine, make_manifest, host_lock, fetcher):
        with host_lock.hold("other"):
            with pytest.raises(LockTimeoutError):
                build_engine().provision(make_manifest(service("shop", 8001)))

        assert fetcher.calls == []


class TestDeploy:

    def test_subset_in_manifest_order(self, build_engine, make_manifest, fetcher, controller):
        manifest = make_manifest(service("a", 8001), service("b", 8002), service("c", 8003))

        summary = build_engine().deploy(manifest, ["c", "a"])

        assert list(summary.services) == ["a", "c"]
        assert sorted(fetcher.calls) == ["a", "c"]
        assert summary.routing is None
        assert controller.tests == 0

    def test_unknown_service(self, build_engine, make_manifest, fetcher):
        manifest = make_manifest(service("a", 8001))

        with pytest.raises(ValidationError) as exc:
            build_engine().deploy(manifest, ["nope"])

        assert exc.value.field == "services"
        assert fetcher.calls == []


class TestCancel:

    def test_pending_services_cancelled(self, build_engine, make_manifest, fetcher, controller):
        """Test services not yet started end cancelled and routing is skipped."""
        engine = build_engine(max_workers=1)
        original = fetcher.fetch

        def fetch_then_cancel(locator, ref, dest):
            engine.cancel()
            return original(locator, ref, dest)

        fetcher.fetch = fetch_then_cancel
        manifest = make_manifest(service("a", 8001), service("b", 8002), service("c", 8003))

        summary = engine.provision(manifest)

        assert summary.cancelled
        assert summary.services["a"].state == ServiceState.RUNNING
        assert summary.services["b"].state == ServiceState.CANCELLED
        assert summary.services["c"].state == ServiceState.CANCELLED
        assert summary.routing is None
        assert controller.tests == 0

    def test_cancel_flag_reset_between_runs(self, build_engine, make_manifest):
        engine = build_engine()
        engine.cancel()

        summary = engine.deploy(make_manifest(service("a", 8001)))

        assert not summary.cancelled
        assert summary.services["a"].state == ServiceState.RUNNING


class TestRoute:

    def test_route_only(self, build_engine, make_manifest, fetcher):
        summary = build_engine().route(make_manifest(service("shop", 8001)))

        assert summary.operation == "route"
        assert summary.services == {}
        assert fetcher.calls == []
        assert summary.routing.route_for("api.shop.example.test").tls

    def test_renewal_reports_certificate_errors(self, build_engine, make_manifest, authority):
        authority.failing["api.shop.example.test"] = False

        summary = build_engine().renew_certificates(make_manifest(service("shop", 8001)))

        assert summary.operation == "renew"
        assert summary.certificate_errors == ["api.shop.example.test: rate limited"]
        assert summary.exit_code == 0

    def test_plan(self, build_engine, make_manifest):
        table = build_engine().plan(make_manifest(service("shop", 8001)))

        assert table.names() == ["shop"]
