from decimal import Decimal
from typing import Optional

from mspark.core.config import settings
from mspark.models import Auction, Gem, Payment, User
from mspark.services.communication.mail_service import MailTemplate


def _gem_block(gem: Gem, price: Optional[Decimal] = None) -> str:
    image = f'<img src="{settings.BASE_URL}/{gem.images[0]}" alt="{gem.name}" width="200">' if gem.images else ""
    final_price = f"<p>Final Price: ${price}</p>" if price is not None else ""
    return f"""
      <h2>{gem.name}</h2>
      <h3>GemId: {gem.id}</h3>
      {final_price}
      <p>Gem Type: {gem.type}</p>
      {image}
    """


def outbid_template(auction: Auction, gem: Gem, new_amount: Decimal) -> MailTemplate:
    return MailTemplate(
        subject=f"You have been outbid on {gem.name}",
        html=f"""
          {_gem_block(gem)}
          <p>A higher bid of ${new_amount} was placed on auction {auction.id}.</p>
          <p>The auction ends at {auction.end_time:%Y-%m-%d %H:%M} UTC. Bid again to stay in the lead.</p>
        """,
    )


def auction_complete_for_merchant(auction: Auction, gem: Gem, winner: Optional[User]) -> MailTemplate:
    if winner:
        body = f"""
          <p>The winning bidder was: {winner.username}</p>
          <p>Gems will be delivered to the winner first.</p>
          <p>After the product has reached the winner soundly, money will be transferred to your wallet.</p>
        """
        price = auction.current_price
    else:
        body = """
          <p>Sorry, no bidders were interested this time.</p>
          <p>Try again with a new price or a longer auction time.</p>
        """
        price = None
    return MailTemplate(
        subject=f"Your auction for {gem.name} has completed",
        html=f"<h1>Auction Completed</h1>{_gem_block(gem, price)}{body}",
    )


def auction_complete_for_bidder(auction: Auction, gem: Gem) -> MailTemplate:
    return MailTemplate(
        subject=f"You won the auction for {gem.name}!",
        html=f"""
          <h1>Congratulations!</h1>
          {_gem_block(gem, auction.current_price)}
          <p>A payment link will follow shortly.</p>
        """,
    )


def payment_link_template(auction: Auction, gem: Gem, payment: Payment) -> MailTemplate:
    return MailTemplate(
        subject=f"Complete your payment for {gem.name}",
        html=f"""
          {_gem_block(gem, auction.current_price)}
          <p>Amount due: {payment.amount} {payment.price_currency}</p>
          <p><a href="{payment.payment_link}">Pay now</a></p>
          <p>The link expires; contact support if you need a new one.</p>
        """,
    )


def payment_paid_template(payment: Payment, gem: Gem) -> MailTemplate:
    return MailTemplate(
        subject=f"Payment received for {gem.name}",
        html=f"""
          {_gem_block(gem)}
          <p>We received your payment of {payment.amount} {payment.price_currency}.</p>
          <p>Your gem will be prepared for delivery.</p>
        """,
    )


def payment_failed_template(payment: Payment, gem: Gem) -> MailTemplate:
    return MailTemplate(
        subject=f"Payment {payment.payment_status.value} for {gem.name}",
        html=f"""
          {_gem_block(gem)}
          <p>Your payment of {payment.amount} {payment.price_currency} is {payment.payment_status.value}.</p>
          <p>Please contact support to receive a new payment link.</p>
        """,
    )


def payout_template(payment: Payment, gem: Gem) -> MailTemplate:
    return MailTemplate(
        subject=f"Payout {payment.payment_status.value} for {gem.name}",
        html=f"""
          {_gem_block(gem)}
          <p>Payout of {payment.amount} {payment.receive_currency} is {payment.payment_status.value}.</p>
        """,
    )
