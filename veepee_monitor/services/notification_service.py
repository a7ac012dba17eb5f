"""
Discord webhook notifications for restock and cart events.
"""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple

import aiohttp
import discord
from discord import Embed

from ..config.config_manager import ConfigManager, config
from ..models.interfaces import INotifier


class AlertEvent(Enum):
    """Alert types sent to Discord."""
    RESTOCK = "restock"
    ITEM_RESERVED = "item_reserved"
    CART_EXTENDED = "cart_extended"
    CART_EMPTIED = "cart_emptied"
    CREDENTIALS_EXPIRED = "credentials_expired"


def format_deadline(value: Optional[str], with_date: bool = True) -> str:
    """Render a remote ISO timestamp the way the shop displays it."""
    if not value:
        return '-'
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return str(value)
    return parsed.strftime('%d/%m/%Y %H:%M' if with_date else '%H:%M')


class NotificationService(INotifier):
    """Fire-and-forget delivery of alerts through a Discord webhook."""

    def __init__(self, config_manager: Optional[ConfigManager] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize notification service."""
        self.config_manager = config_manager or config
        self.logger = logging.getLogger(__name__)
        self.session = session
        self._owns_session = session is None
        self._pending: Set[asyncio.Task] = set()

        self.webhook_url = self.config_manager.get('notifications.discord_webhook') or ''
        self.mention_everyone = self.config_manager.get('notifications.mention_everyone', True)
        self.username = self.config_manager.get('notifications.username', 'Veepee Monitor')
        self.checkout_url = self.config_manager.get('veepee.checkout_url', 'https://www.veepee.fr/cart')
        self.reservation_minutes = self.config_manager.get('cart.reservation_minutes', 15)

        self.embed_colors = {
            'restock': self.config_manager.get('notifications.colors.restock', 0xe91e63),  # Veepee pink
            'reserved': self.config_manager.get('notifications.colors.reserved', 0x22c55e),
            'extended': self.config_manager.get('notifications.colors.extended', 0x22c55e),
            'emptied': self.config_manager.get('notifications.colors.emptied', 0xfbbf24),
            'credentials': self.config_manager.get('notifications.colors.credentials', 0xf87171),
        }

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, event: AlertEvent, payload: Dict[str, Any]) -> None:
        """
        Schedule delivery of an alert and return immediately.

        Delivery errors are logged by the background task and never
        reach the caller.
        """
        if not self.is_configured:
            self.logger.info(f"Discord webhook not configured, dropping {event.value} alert")
            return

        task = asyncio.create_task(self._deliver(event, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self.session

    async def _deliver(self, event: AlertEvent, payload: Dict[str, Any]) -> bool:
        try:
            content, embed = self.build_message(event, payload)
            session = await self._get_session()
            webhook = discord.Webhook.from_url(self.webhook_url, session=session)
            await webhook.send(
                content=content,
                embed=embed,
                username=self.username,
                allowed_mentions=discord.AllowedMentions(everyone=self.mention_everyone)
            )
            self.logger.info(f"Discord {event.value} alert sent")
            return True
        except Exception as e:
            self.logger.error(f"Failed to deliver {event.value} alert: {e}")
            return False

    def _mention(self, text: str) -> str:
        return f"@everyone {text}" if self.mention_everyone else text

    def build_message(self, event: AlertEvent, payload: Dict[str, Any]) -> Tuple[Optional[str], Embed]:
        """Build the message content and embed for an event."""
        builders = {
            AlertEvent.RESTOCK: self._build_restock,
            AlertEvent.ITEM_RESERVED: self._build_reserved,
            AlertEvent.CART_EXTENDED: self._build_extended,
            AlertEvent.CART_EMPTIED: self._build_emptied,
            AlertEvent.CREDENTIALS_EXPIRED: self._build_credentials,
        }
        return builders[event](payload)

    def _build_restock(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Embed]:
        """
        Restock alert carrying the reservation outcome.

        The outcome is one of: reserved, failed with a reason, or not
        attempted at all.
        """
        reservation = payload.get('reservation')
        product_info = payload['product_info']

        if reservation is not None and reservation.success:
            title = "🛒 AJOUTÉ AU PANIER!"
            color = self.embed_colors['reserved']
            content = self._mention("🛒 **ARTICLE AJOUTÉ AU PANIER - CHECKOUT MAINTENANT!**")
            cart_status = "✅ Ajouté au panier!"
        else:
            title = "🚨 STOCK DISPONIBLE!"
            color = self.embed_colors['restock']
            content = self._mention("🚨 **NOUVEAU STOCK - AJOUTE VITE AU PANIER!**")
            if reservation is not None and reservation.error:
                cart_status = f"❌ Échec: {reservation.error[:50]}"
            elif reservation is not None and not reservation.attempted:
                cart_status = "⏸️ Réservation désactivée"
            else:
                cart_status = "❌ Non ajouté"

        embed = Embed(title=title, color=color, timestamp=datetime.now(timezone.utc))
        embed.add_field(name="👕 Produit", value=f"**{product_info.title}**", inline=False)
        embed.add_field(name="📏 Taille", value=f"**{payload.get('size', '?')}**", inline=True)
        embed.add_field(name="📦 Quantité", value=f"{payload.get('quantity', 0)} dispo", inline=True)
        embed.add_field(name="🛒 Panier", value=cart_status, inline=True)

        if reservation is not None and reservation.success and reservation.product_info:
            info = reservation.product_info
            embed.add_field(
                name="💰 Prix",
                value=f"{info.price} ~~{info.original_price}~~ ({info.discount})",
                inline=False
            )
            if info.image:
                embed.set_thumbnail(url=info.image)
        elif product_info.price and product_info.price != '-':
            embed.add_field(name="💰 Prix", value=product_info.price, inline=True)

        if reservation is not None and reservation.success and reservation.expiration_date:
            embed.add_field(
                name="⏰ Expire",
                value=format_deadline(reservation.expiration_date, with_date=False),
                inline=True
            )

        embed.add_field(
            name="🔗 Liens",
            value=f"[Voir produit]({payload.get('product_url')}) | [Checkout]({self.checkout_url})",
            inline=False
        )
        embed.set_footer(text=f"ID: {payload.get('variant_id')}")
        return content, embed

    def _build_reserved(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Embed]:
        reservation = payload['reservation']
        info = reservation.product_info or payload['product_info']

        embed = Embed(
            title="🚨 ARTICLE AJOUTÉ AU PANIER!",
            color=self.embed_colors['reserved'],
            timestamp=datetime.now(timezone.utc)
        )
        if info.image:
            embed.set_thumbnail(url=info.image)
        embed.add_field(name="👕 Produit", value=f"**{info.title}**", inline=False)
        embed.add_field(name="📏 Taille", value=f"**{payload.get('size', '?')}**", inline=True)
        embed.add_field(name="📦 Stock", value=f"{payload.get('quantity', 0)} dispo", inline=True)
        embed.add_field(
            name="💰 Prix",
            value=f"{info.price} ~~{info.original_price}~~ ({info.discount})",
            inline=False
        )
        embed.add_field(
            name="⏰ CHECKOUT AVANT",
            value=f"**{format_deadline(reservation.expiration_date)}**",
            inline=False
        )
        embed.add_field(
            name="🔗 Liens",
            value=f"[Voir produit]({payload.get('product_url')}) | [Aller au panier]({self.checkout_url})",
            inline=False
        )
        embed.set_footer(text=f"ID: {payload.get('variant_id')}")
        return self._mention("🚨 **ARTICLE AJOUTÉ AU PANIER - CHECKOUT MAINTENANT!**"), embed

    def _build_extended(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Embed]:
        items = payload.get('items') or []
        item_lines = '\n'.join(
            f"• {item.get('productName', 'Article')} ({item.get('size', '?')})" for item in items
        )

        embed = Embed(
            title="🔄 PANIER PROLONGÉ",
            description="Le panier a été prolongé avec succès!",
            color=self.embed_colors['extended'],
            timestamp=datetime.now(timezone.utc)
        )
        embed.add_field(name="📦 Articles", value=item_lines[:1024] or 'Aucun', inline=False)
        embed.add_field(
            name="⏰ Nouvelle expiration",
            value=f"**{format_deadline(payload.get('expiration_date'))}**",
            inline=False
        )
        embed.add_field(name="🛒 Checkout", value=f"[Aller au panier]({self.checkout_url})", inline=False)
        embed.set_footer(text=f"{len(items)} article(s) dans le panier")
        content = f"🔄 **PANIER PROLONGÉ - Tu as encore {self.reservation_minutes} minutes!**"
        return content, embed

    def _build_emptied(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Embed]:
        embed = Embed(
            title="🛒 PANIER VIDE",
            description="Le panier est vide. Le prolongement automatique a été désactivé.",
            color=self.embed_colors['emptied'],
            timestamp=datetime.now(timezone.utc)
        )
        embed.add_field(
            name="ℹ️ Info",
            value="Le prolongement reprendra automatiquement quand un article sera ajouté au panier.",
            inline=False
        )
        embed.set_footer(text=self.username)
        return None, embed

    def _build_credentials(self, payload: Dict[str, Any]) -> Tuple[Optional[str], Embed]:
        embed = Embed(
            title="⚠️ TOKEN EXPIRÉ",
            description="Le token Veepee a expiré. Le monitoring continue mais échouera jusqu'à la mise à jour du token.",
            color=self.embed_colors['credentials'],
            timestamp=datetime.now(timezone.utc)
        )
        embed.add_field(
            name="🔧 Action requise",
            value="Mettez à jour le token via POST /api/config/auth ou la variable VEEPEE_AUTH",
            inline=False
        )
        embed.add_field(name="❌ Erreur", value=f"`{str(payload.get('error', ''))[:1000]}`", inline=False)
        embed.set_footer(text=self.username)
        return self._mention("⚠️ **TOKEN EXPIRÉ - MISE À JOUR REQUISE!**"), embed

    async def flush(self) -> None:
        """Wait for alerts that are still being delivered."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Flush pending alerts and close the session if this service created it."""
        await self.flush()
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
