"""
Integration tests for amqplink against a real RabbitMQ broker.

The broker is provisioned with testcontainers. Tests are skipped
automatically if Docker or testcontainers is not available.

Run integration tests:
    pytest tests/integration/ -v

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
