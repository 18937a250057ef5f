import json
import time

import pika
import structlog

log = structlog.get_logger().bind(component="rabbitmq_producer")


class RabbitMQProducer:
    """
    Handles the connection to RabbitMQ and publishing of events.
    Connects lazily and gives up after a bounded number of attempts, so a
    broker outage surfaces as an exception instead of blocking the caller.
    """

    def __init__(self, host, exchange_name="events", exchange_type="topic",
                 connect_attempts=3, retry_delay=1.0):
        self.host = host
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None

    def connect(self):
        """Establishes a connection to RabbitMQ with retry logic."""
        for attempt in range(1, self.connect_attempts + 1):
            try:
                parameters = pika.ConnectionParameters(
                    host=self.host, heartbeat=600, blocked_connection_timeout=300
                )
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()

                # Declare the exchange (durable ensures it survives restarts)
                self.channel.exchange_declare(
                    exchange=self.exchange_name,
                    exchange_type=self.exchange_type,
                    durable=True
                )
                log.info("rabbitmq_connected", exchange=self.exchange_name)
                return
            except pika.exceptions.AMQPConnectionError:
                log.warning("rabbitmq_not_ready", attempt=attempt, host=self.host)
                if attempt == self.connect_attempts:
                    raise
                time.sleep(self.retry_delay)

    def publish(self, routing_key, message):
        """
        Publishes a message to the exchange with a specific routing key.

        Args:
            routing_key (str): The topic key (e.g., 'notification.email').
            message (dict): The data payload to send.
        """
        # Reconnect if the connection was lost
        if not self.connection or self.connection.is_closed:
            self.connect()

        self.channel.basic_publish(
            exchange=self.exchange_name,
            routing_key=routing_key,
            body=json.dumps(message),
            properties=pika.BasicProperties(
                delivery_mode=2,  # Make message persistent
                content_type='application/json'
            )
        )
        log.info("event_published", routing_key=routing_key)

    def close(self):
        """Closes the connection cleanly."""
        if self.connection and not self.connection.is_closed:
            self.connection.close()
