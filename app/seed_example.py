from decimal import Decimal

from sqlalchemy import select

from app.config import settings
from app.db import SessionLocal, create_schema
from app.logging_config import configure_logging
from app.models import Profile, Room, RoomTileZone, Site, Tile, Vendor
from app.services.requirement_ledger_service import requirement_ledger


def seed() -> None:
    with SessionLocal() as db:
        site = db.execute(select(Site).where(Site.name == 'Demo Villa')).scalar_one_or_none()
        if not site:
            site = Site(name='Demo Villa')
            db.add(site)
            db.flush()

        owner = db.execute(select(Profile).where(Profile.full_name == 'Site Owner')).scalar_one_or_none()
        if not owner:
            db.add(Profile(full_name='Site Owner', role='owner', active=True))

        vendor = db.execute(select(Vendor).where(Vendor.name == 'Demo Tiles & Co')).scalar_one_or_none()
        if not vendor:
            db.add(Vendor(name='Demo Tiles & Co', phone='000-000-0000', active=True))

        tile = db.execute(select(Tile).where(Tile.brand == 'Demo Vitrified')).scalar_one_or_none()
        if not tile:
            tile = Tile(brand='Demo Vitrified', size_label='600x600', tile_type='floor', active=True)
            db.add(tile)
            db.flush()

        rooms_by_name = {}
        for name in ('Living Room', 'Master Bedroom'):
            room = db.execute(select(Room).where(Room.site_id == site.id, Room.name == name)).scalar_one_or_none()
            if not room:
                room = Room(site_id=site.id, name=name, surface_type='floor', status='planned')
                db.add(room)
                db.flush()
            rooms_by_name[name] = room

        living = rooms_by_name['Living Room']
        zones = db.execute(select(RoomTileZone).where(RoomTileZone.room_id == living.id)).scalars().all()
        if not zones:
            db.add(RoomTileZone(room_id=living.id, zone_name='Main floor', tile_id=tile.id, required_qty=Decimal('40')))
            db.add(RoomTileZone(room_id=living.id, zone_name='Skirting', tile_id=tile.id, required_qty=Decimal('10')))
            db.flush()

        requirement_ledger.synchronize(db, (living.id, tile.id))

        db.commit()


if __name__ == '__main__':
    configure_logging(settings)
    create_schema()
    seed()
    print('Seed data inserted/verified.')
