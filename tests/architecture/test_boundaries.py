from pytest_archon import archrule


def test_domain_modules_are_transport_free() -> None:
    """
    Envelope, topology, routing and outcome modules are pure.
    They must not depend on a broker client or a concrete transport.
    """
    for module in (
        "demo_messaging.envelope",
        "demo_messaging.topology",
        "demo_messaging.routing",
        "demo_messaging.outcome",
        "demo_messaging.serialization",
    ):
        (
            archrule(f"{module}_is_pure")
            .match(module)
            .should_not_import("aio_pika*")
            .should_not_import("demo_messaging.rabbitmq*")
            .should_not_import("demo_messaging.memory*")
            .should_not_import("demo_messaging.bootstrap")
            .check("demo_messaging", only_direct_imports=True)
        )


def test_routing_does_not_know_producers_or_consumers() -> None:
    """
    The router is a pure function of the binding table.
    """
    (
        archrule("routing_isolation")
        .match("demo_messaging.routing")
        .should_not_import("demo_messaging.producer")
        .should_not_import("demo_messaging.consumer")
        .should_not_import("demo_messaging.delay")
        .check("demo_messaging", only_direct_imports=True)
    )


def test_memory_broker_has_no_aio_pika() -> None:
    """
    The in-memory broker must run without a RabbitMQ client.
    """
    (
        archrule("memory_independence")
        .match("demo_messaging.memory*")
        .should_not_import("aio_pika*")
        .should_not_import("demo_messaging.rabbitmq*")
        .check("demo_messaging", only_direct_imports=True)
    )


def test_components_depend_on_ports_not_adapters() -> None:
    """
    Producer, consumer, scheduler and dead-letter handler talk to IBrokerTransport.
    Only bootstrap chooses a concrete adapter.
    """
    (
        archrule("ports_over_adapters")
        .match("demo_messaging.producer")
        .match("demo_messaging.consumer")
        .match("demo_messaging.delay")
        .match("demo_messaging.dead_letter")
        .match("demo_messaging.handlers")
        .should_not_import("demo_messaging.rabbitmq*")
        .should_not_import("demo_messaging.memory*")
        .should_not_import("aio_pika*")
        .check("demo_messaging", only_direct_imports=True)
    )
