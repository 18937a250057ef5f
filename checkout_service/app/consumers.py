import json
import smtplib
import time
from email.message import EmailMessage

import pika
import structlog

from .config import SmtpConfig, load_settings
from .logging_config import configure_logging
from .notifications import EMAIL_ROUTING_KEY

log = structlog.get_logger().bind(component="email_consumer")

EMAIL_QUEUE = "checkout.notification.email"


class SmtpSender:
    def __init__(self, config: SmtpConfig):
        self.config = config

    def send(self, to, subject, html):
        message = EmailMessage()
        message["From"] = self.config.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("Please view this message in an HTML-capable email client.")
        message.add_alternative(html, subtype="html")
        with smtplib.SMTP(self.config.host, self.config.port, timeout=30) as smtp:
            smtp.starttls()
            if self.config.user:
                smtp.login(self.config.user, self.config.password or "")
            smtp.send_message(message)


class EmailConsumer:
    def __init__(self, host, sender):
        self.host = host
        self.sender = sender
        self.connection = None
        self.channel = None

    def connect(self):
        """Connects to RabbitMQ and sets up the email queue."""
        while True:
            try:
                parameters = pika.ConnectionParameters(self.host, heartbeat=600, blocked_connection_timeout=300)
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()

                # Declare the exchange (ensure it exists)
                self.channel.exchange_declare(exchange='events', exchange_type='topic', durable=True)

                self.channel.queue_declare(queue=EMAIL_QUEUE, durable=True)
                self.channel.queue_bind(exchange='events', queue=EMAIL_QUEUE, routing_key=EMAIL_ROUTING_KEY)

                log.info("email_consumer_connected", queue=EMAIL_QUEUE)
                break
            except pika.exceptions.AMQPConnectionError:
                log.warning("rabbitmq_not_ready", retry_in_seconds=5)
                time.sleep(5)

    def process_email(self, ch, method, properties, body):
        """
        Received 'notification.email'.
        Action: deliver the email. Undeliverable messages are logged and
        dropped; a failed email never affects the order it is about.
        """
        try:
            data = json.loads(body)
            self.sender.send(data["to"], data["subject"], data["html"])
            log.info("email_sent", to=data["to"], subject=data["subject"])
        except (ValueError, KeyError) as e:
            log.error("email_message_malformed", error=str(e))
        except (smtplib.SMTPException, OSError) as e:
            log.error("email_send_failed", error=str(e))
        finally:
            # Acknowledge the message so RabbitMQ removes it from queue
            ch.basic_ack(delivery_tag=method.delivery_tag)

    def start_listening(self):
        """Starts the consuming loop."""
        if not self.connection:
            self.connect()

        self.channel.basic_consume(queue=EMAIL_QUEUE, on_message_callback=self.process_email)

        log.info("email_consumer_waiting")
        self.channel.start_consuming()


def main():
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)
    consumer = EmailConsumer(settings.rabbitmq_host or "rabbitmq", SmtpSender(settings.smtp))
    consumer.start_listening()


if __name__ == "__main__":
    main()
