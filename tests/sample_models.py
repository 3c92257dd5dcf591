"""
ModelRest — Sample ORM Models for Tests
========================================

Person, Animal and Movie with one relation of every generated kind:

    Person.parent    belongs-to-one  (Person.pid → Person.id)
    Person.children  has-many        (Person.pid)
    Person.pets      has-many        (Animal.owner_id)
    Person.movies    many-to-many    (Person_Movie.actor_id / movie_id)
    Person.profile   has-one         (Profile.person_id, uselist=False)
"""

from typing import List, Optional

from sqlalchemy import Column, ForeignKey, Integer, String, Table
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


person_movie = Table(
    "Person_Movie",
    Base.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actor_id", Integer, ForeignKey("Person.id", ondelete="CASCADE"), index=True),
    Column("movie_id", Integer, ForeignKey("Movie.id", ondelete="CASCADE"), index=True),
)


class Person(Base):
    __tablename__ = "Person"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pid: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("Person.id", ondelete="SET NULL"), nullable=True, index=True
    )
    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    parent: Mapped[Optional["Person"]] = relationship(
        "Person", remote_side=[id], back_populates="children"
    )
    children: Mapped[List["Person"]] = relationship("Person", back_populates="parent")
    pets: Mapped[List["Animal"]] = relationship("Animal", back_populates="owner")
    movies: Mapped[List["Movie"]] = relationship("Movie", secondary=person_movie, back_populates="actors")
    profile: Mapped[Optional["Profile"]] = relationship("Profile", uselist=False, back_populates="person")


class Animal(Base):
    __tablename__ = "Animal"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("Person.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    owner: Mapped[Optional[Person]] = relationship(Person, back_populates="pets")


class Movie(Base):
    __tablename__ = "Movie"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    actors: Mapped[List[Person]] = relationship(Person, secondary=person_movie, back_populates="movies")


class Profile(Base):
    __tablename__ = "Profile"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("Person.id"), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    person: Mapped[Optional[Person]] = relationship(Person, back_populates="profile")
